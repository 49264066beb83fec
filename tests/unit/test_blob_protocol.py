"""
Protocol tests for the batch session using a scripted cat-file backend.

The fake process answers with a fixed byte sequence, which makes it possible
to simulate desynchronized channels and malformed answers that a real git
process never produces.
"""
import io
from unittest.mock import patch

import pytest

from pushguard.core.blob import BatchSession
from pushguard.core.exceptions import (
    ObjectNotFoundError,
    ProtocolMismatchError,
    SessionBusyError,
    SessionUnusableError,
    TransportError,
    UnexpectedObjectTypeError,
)

SHA_1 = "1" * 40
SHA_2 = "2" * 40


class FakeProcess:
    def __init__(self, response: bytes):
        self.stdin = io.BytesIO()
        self.stdout = io.BytesIO(response)
        self.killed = False
        self.returncode = None

    def poll(self):
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9

    def wait(self):
        return self.returncode


def batch_answer(sha: str, object_type: str, content: bytes) -> bytes:
    return f"{sha} {object_type} {len(content)}\n".encode() + content + b"\n"


@pytest.fixture
def fake_backend():
    """Patches Popen; every started backend gets the next scripted response."""
    processes = []
    responses = []

    def popen(*args, **kwargs):
        process = FakeProcess(responses.pop(0))
        processes.append(process)
        return process

    with patch("pushguard.core.blob.subprocess.Popen", side_effect=popen) as mock_popen:
        yield responses, processes, mock_popen


def test_reads_full_blob_and_reuses_backend(fake_backend):
    responses, processes, mock_popen = fake_backend
    responses.append(batch_answer(SHA_1, "blob", b"hello") + batch_answer(SHA_2, "blob", b"world!"))
    session = BatchSession("/repo")

    first = session.read_blob(SHA_1)
    assert (first.sha, first.size, first.content_size) == (SHA_1, 5, 5)
    assert first.read_all() == b"hello"

    second = session.read_blob(SHA_2)
    assert second.read_all() == b"world!"

    assert mock_popen.call_count == 1
    assert processes[0].stdin.getvalue() == f"{SHA_1}\n{SHA_2}\n".encode()
    assert not processes[0].killed


def test_size_limit_truncates_and_restarts_backend(fake_backend):
    responses, processes, mock_popen = fake_backend
    responses.append(batch_answer(SHA_1, "blob", b"0123456789"))
    responses.append(batch_answer(SHA_2, "blob", b"next"))
    session = BatchSession("/repo")

    blob = session.read_blob(SHA_1, size_limit=4)
    assert blob.size == 10
    assert blob.content_size == 4
    assert blob.read_all() == b"0123"
    assert processes[0].killed

    assert session.read_blob(SHA_2).read_all() == b"next"
    assert mock_popen.call_count == 2


def test_limit_larger_than_blob_returns_declared_size(fake_backend):
    responses, _, _ = fake_backend
    responses.append(batch_answer(SHA_1, "blob", b"short"))

    blob = BatchSession("/repo").read_blob(SHA_1, size_limit=1024)

    assert blob.content_size == 5
    assert blob.read_all() == b"short"


def test_partial_read_close_terminates_backend(fake_backend):
    responses, processes, _ = fake_backend
    responses.append(batch_answer(SHA_1, "blob", b"abcdef"))
    session = BatchSession("/repo")

    blob = session.read_blob(SHA_1)
    assert blob.content.read(2) == b"ab"
    blob.content.close()
    blob.content.close()

    assert processes[0].killed
    assert session.usable


def test_read_while_content_open_is_rejected(fake_backend):
    responses, _, _ = fake_backend
    responses.append(batch_answer(SHA_1, "blob", b"abc"))
    session = BatchSession("/repo")

    blob = session.read_blob(SHA_1)
    with pytest.raises(SessionBusyError):
        session.read_blob(SHA_2)
    blob.content.close()


def test_mismatched_sha_leaves_session_unusable(fake_backend):
    responses, processes, _ = fake_backend
    responses.append(batch_answer(SHA_2, "blob", b"other"))
    session = BatchSession("/repo")

    with pytest.raises(ProtocolMismatchError):
        session.read_blob(SHA_1)

    assert not session.usable
    assert processes[0].killed
    with pytest.raises(SessionUnusableError):
        session.read_blob(SHA_1)


def test_unexpected_type_leaves_session_unusable(fake_backend):
    responses, _, _ = fake_backend
    responses.append(batch_answer(SHA_1, "tree", b"\x00" * 20))
    session = BatchSession("/repo")

    with pytest.raises(UnexpectedObjectTypeError):
        session.read_blob(SHA_1)

    assert not session.usable


def test_expected_type_can_be_overridden(fake_backend):
    responses, _, _ = fake_backend
    responses.append(batch_answer(SHA_1, "commit", b"tree abc\n"))

    reader = BatchSession("/repo").read_object(SHA_1, expected_type="commit")

    assert reader.read_all() == b"tree abc\n"


def test_malformed_header_is_protocol_error(fake_backend):
    responses, _, _ = fake_backend
    responses.append(b"fatal: not a git repository\n")
    session = BatchSession("/repo")

    with pytest.raises(ProtocolMismatchError):
        session.read_blob(SHA_1)
    assert not session.usable


def test_missing_object_keeps_session_usable(fake_backend):
    responses, _, mock_popen = fake_backend
    responses.append(f"{SHA_1} missing\n".encode() + batch_answer(SHA_2, "blob", b"ok"))
    session = BatchSession("/repo")

    with pytest.raises(ObjectNotFoundError):
        session.read_blob(SHA_1)

    assert session.usable
    assert session.read_blob(SHA_2).read_all() == b"ok"
    assert mock_popen.call_count == 1


def test_backend_exit_is_transport_error(fake_backend):
    responses, _, _ = fake_backend
    responses.append(b"")
    session = BatchSession("/repo")

    with pytest.raises(TransportError):
        session.read_blob(SHA_1)
    assert not session.usable


def test_truncated_payload_is_transport_error(fake_backend):
    responses, _, _ = fake_backend
    responses.append(f"{SHA_1} blob 10\n".encode() + b"abc")
    session = BatchSession("/repo")

    blob = session.read_blob(SHA_1)
    with pytest.raises(TransportError):
        blob.content.read()
    blob.content.close()

    assert not session.usable


def test_missing_separator_leaves_session_unusable(fake_backend):
    responses, _, _ = fake_backend
    responses.append(f"{SHA_1} blob 3\n".encode() + b"abcX")
    session = BatchSession("/repo")

    assert session.read_blob(SHA_1).read_all() == b"abc"
    assert not session.usable


def test_closed_session_rejects_reads(fake_backend):
    session = BatchSession("/repo")
    session.close()

    with pytest.raises(SessionUnusableError):
        session.read_blob(SHA_1)


def test_alternate_object_dirs_are_exported(fake_backend):
    responses, _, mock_popen = fake_backend
    responses.append(batch_answer(SHA_1, "blob", b"x"))

    with BatchSession("/repo", alternate_object_dirs=["/repo/objects/incoming"]) as session:
        session.read_blob(SHA_1).read_all()

    kwargs = mock_popen.call_args.kwargs
    assert kwargs["env"]["GIT_ALTERNATE_OBJECT_DIRECTORIES"] == "/repo/objects/incoming"
    assert kwargs["cwd"] == "/repo"
    assert mock_popen.call_args.args[0] == ["git", "cat-file", "--batch"]
