"""
Streaming access to git objects over a ``git cat-file --batch`` channel.

One backend process answers many object queries over a single ordered pipe.
There are no request ids on that pipe, so a session must only ever be used
by one reader at a time: write a request, read its header, then consume or
close the returned content before issuing the next request.
"""
import io
import logging
import subprocess
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .classes import ScanEnvironment
from .exceptions import (
    ObjectNotFoundError,
    ProtocolMismatchError,
    SessionBusyError,
    SessionUnusableError,
    TransportError,
    UnexpectedObjectTypeError,
)

__all__ = [
    "BatchSession",
    "BlobContent",
    "BlobReader",
    "open_batch_session",
]

log = logging.getLogger("pushguard")

OBJECT_TYPE_BLOB = "blob"


@dataclass
class BlobReader:
    sha: str
    # size is the actual size of the object in the store
    size: int
    # content_size is the total number of bytes content will return
    content_size: int
    content: 'BlobContent'

    def read_all(self) -> bytes:
        """Read the whole (possibly truncated) content and release it."""
        with self.content:
            return self.content.read()


class BlobContent(io.RawIOBase):
    """
    Forward-only stream over the payload of one batch response.

    Yields exactly ``size`` bytes. ``close`` hands the stream back to its
    session exactly once, whether or not it was read to the end.
    """

    def __init__(self, stream: io.BufferedIOBase, size: int, release: Callable[["BlobContent"], None]):
        super().__init__()
        self.size = size
        self.failed = False
        self._stream = stream
        self._remaining = size
        self._release = release

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed blob content.")
        if self._remaining <= 0:
            return 0
        size = min(len(buffer), self._remaining)
        try:
            data = self._stream.read(size)
        except (OSError, ValueError) as error:
            self.failed = True
            raise TransportError(f"Failed to read object content from cat-file: {error}") from error
        if not data:
            self.failed = True
            raise TransportError(
                f"cat-file closed the channel with {self._remaining} bytes of content outstanding")
        buffer[:len(data)] = data
        self._remaining -= len(data)
        return len(data)

    @property
    def remaining(self) -> int:
        return self._remaining

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._release(self)
        finally:
            super().close()


class BatchSession:
    """
    Client for a long-lived ``git cat-file --batch`` process.

    The backend is started lazily on the first read. After a partially
    consumed or size-limited read, the backend is terminated and a new one is
    started on the next read, so leftover payload bytes never reach a later
    request. Protocol violations and transport failures leave the session
    unusable; callers have to open a new session instead of retrying.
    """

    def __init__(
        self,
        repo_path: str,
        alternate_object_dirs: Optional[Iterable[str]] = None,
        git_binary: str = "git",
    ):
        self.repo_path = repo_path
        self.environment = ScanEnvironment(alternate_object_dirs=tuple(alternate_object_dirs or ()))
        self.git_binary = git_binary
        self._process: Optional[subprocess.Popen] = None
        self._active: Optional[BlobContent] = None
        self._pending_payload = 0
        self._unusable_reason: Optional[str] = None

    def __enter__(self) -> 'BatchSession':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def usable(self) -> bool:
        return self._unusable_reason is None

    def _start(self) -> subprocess.Popen:
        cmd = [self.git_binary, "cat-file", "--batch"]
        log.debug(f"Starting object store backend: {' '.join(cmd)} in {self.repo_path}")
        try:
            return subprocess.Popen(
                cmd,
                cwd=self.repo_path,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                env=self.environment.git_env(),
            )
        except OSError as error:
            raise TransportError(f"Failed to start git cat-file: {error}") from error

    def _terminate(self) -> None:
        process, self._process = self._process, None
        if process is None:
            return
        # kill first so a reader blocked on stdout in another thread sees EOF
        if process.poll() is None:
            process.kill()
        process.wait()
        for pipe in (process.stdin, process.stdout):
            try:
                if pipe is not None:
                    pipe.close()
            except OSError:
                pass

    def _invalidate(self, reason: str) -> None:
        log.debug(f"Discarding batch session for {self.repo_path}: {reason}")
        self._unusable_reason = reason
        self._terminate()

    def read_object(self, sha: str, size_limit: int = 0, expected_type: str = OBJECT_TYPE_BLOB) -> BlobReader:
        """
        Request an object and return a reader over its content.

        With a positive ``size_limit`` the content is truncated to at most that
        many bytes. The returned ``content`` must be closed before the next call.
        """
        if not self.usable:
            raise SessionUnusableError(f"Batch session can't be reused: {self._unusable_reason}")
        if self._active is not None:
            raise SessionBusyError(
                "Previous object content is still open; close it before reading the next object")
        if self._process is None:
            self._process = self._start()
        process = self._process

        try:
            process.stdin.write(f"{sha}\n".encode())
            process.stdin.flush()
        except (OSError, ValueError) as error:
            self._invalidate("failed to write request")
            raise TransportError(f"Failed to write object sha to cat-file stdin: {error}") from error

        object_sha, object_type, object_size = self._read_header(process, sha)

        if object_sha != sha:
            self._invalidate("desynchronized channel")
            raise ProtocolMismatchError(f"cat-file returned object sha '{object_sha}' but expected '{sha}'")
        if object_type != expected_type:
            self._invalidate("unexpected object type")
            raise UnexpectedObjectTypeError(
                f"cat-file returned object type '{object_type}' but expected '{expected_type}'")

        content_size = object_size
        if size_limit > 0 and size_limit < content_size:
            content_size = size_limit

        self._pending_payload = object_size
        content = BlobContent(process.stdout, content_size, self._release)
        self._active = content
        return BlobReader(sha=sha, size=object_size, content_size=content_size, content=content)

    def read_blob(self, sha: str, size_limit: int = 0) -> BlobReader:
        return self.read_object(sha, size_limit=size_limit, expected_type=OBJECT_TYPE_BLOB)

    def _read_header(self, process: subprocess.Popen, sha: str):
        try:
            line = process.stdout.readline()
        except (OSError, ValueError) as error:
            self._invalidate("failed to read header")
            raise TransportError(f"Failed to read cat-file batch line: {error}") from error
        if not line:
            self._invalidate("backend closed the channel")
            raise TransportError(f"cat-file exited before answering for '{sha}'")

        parts = line.decode("utf-8", errors="replace").rstrip("\n").split(" ")
        if len(parts) == 2 and parts[1] in ("missing", "ambiguous"):
            if parts[0] != sha:
                self._invalidate("desynchronized channel")
                raise ProtocolMismatchError(f"cat-file returned object sha '{parts[0]}' but expected '{sha}'")
            # nothing follows a missing line, the channel is still in sync
            raise ObjectNotFoundError(f"Object '{sha}' is {parts[1]} in {self.repo_path}")
        if len(parts) != 3 or not parts[2].isdigit():
            self._invalidate("malformed header")
            raise ProtocolMismatchError(f"cat-file returned malformed batch line {line!r}")
        return parts[0], parts[1], int(parts[2])

    def _release(self, content: BlobContent) -> None:
        if self._active is content:
            self._active = None
        if self._process is None:
            return
        if content.failed:
            self._invalidate("failed to read object content")
            return
        if content.remaining > 0 or content.size != self._pending_payload:
            # payload bytes are still queued on the pipe; drop the backend instead of draining it
            log.debug(f"Object content closed early, stopping cat-file for {self.repo_path}")
            self._terminate()
            return
        try:
            separator = self._process.stdout.read(1)
        except (OSError, ValueError):
            separator = b""
        if separator != b"\n":
            self._invalidate("missing payload separator")

    def close(self) -> None:
        """Terminate the backend. Safe to call from another thread to abort a blocked read."""
        if self._unusable_reason is None:
            self._unusable_reason = "session closed"
        self._terminate()


def open_batch_session(
    repo_path: str,
    alternate_object_dirs: Optional[Iterable[str]] = None,
    git_binary: str = "git",
) -> BatchSession:
    return BatchSession(repo_path, alternate_object_dirs=alternate_object_dirs, git_binary=git_binary)
