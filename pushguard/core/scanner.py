import json
import os
import re
import subprocess
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, List, Optional

from git import Repo
from git.exc import GitCommandError

from pushguard.core import log
from pushguard.core.blob import open_batch_session
from pushguard.core.classes import Finding, ScanEnvironment, is_nil_sha
from pushguard.core.exceptions import EvaluationCancelled, ObjectNotFoundError, ScanError

COMMIT_MARKER = "__COMMIT__ "
GITLINK_MODE = "160000"
BINARY_SNIFF_SIZE = 8000

C_ESCAPES = {
    b"a": b"\a", b"b": b"\b", b"t": b"\t", b"n": b"\n", b"v": b"\v", b"f": b"\f", b"r": b"\r",
    b"\"": b"\"", b"\\": b"\\",
}
ESCAPE_PATTERN = re.compile(rb"\\([0-7]{3}|.)")


def unquote_path(path: str) -> str:
    """Decode a path that git printed C-quoted, e.g. ``"d\\303\\251j\\303\\240.txt"``."""
    if len(path) < 2 or not (path.startswith('"') and path.endswith('"')):
        return path

    def replace(match):
        value = match.group(1)
        if len(value) == 3:
            return bytes([int(value, 8) & 0xFF])
        return C_ESCAPES.get(value, value)

    raw = ESCAPE_PATTERN.sub(replace, path[1:-1].encode("utf-8"))
    return raw.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class BlobChange:
    commit: str
    path: str
    sha: str


class Detector(ABC):
    @abstractmethod
    def detect(self, content: bytes, path: str, commit: str) -> List[Finding]:
        """Return the secrets found in the content of one blob"""
        pass


class GitleaksDetector(Detector):
    """Runs ``gitleaks stdin`` on each blob and reads its JSON report."""

    def __init__(
        self,
        gitleaks_path: str = "gitleaks",
        config_path: Optional[str] = None,
        redact: bool = True,
        timeout: int = 60,
    ):
        self.gitleaks_path = gitleaks_path
        self.config_path = config_path
        self.redact = redact
        self.timeout = timeout

    def build_command(self, report_path: str) -> List[str]:
        cmd = [
            self.gitleaks_path,
            "stdin",
            "--no-banner",
            "--log-level", "error",
            "--report-format", "json",
            "--report-path", report_path,
            "--exit-code", "0",  # findings are read from the report, not the exit code
        ]
        if self.redact:
            cmd.append("--redact")
        if self.config_path:
            cmd.extend(["--config", self.config_path])
        return cmd

    def detect(self, content: bytes, path: str, commit: str) -> List[Finding]:
        with tempfile.TemporaryDirectory(prefix="pushguard-") as temp_dir:
            report_path = os.path.join(temp_dir, "report.json")
            cmd = self.build_command(report_path)
            try:
                result = subprocess.run(cmd, input=content, capture_output=True, timeout=self.timeout)
            except FileNotFoundError as error:
                raise ScanError(f"gitleaks binary not found at '{self.gitleaks_path}'") from error
            except subprocess.TimeoutExpired as error:
                raise ScanError(f"gitleaks timed out after {self.timeout}s scanning {path}") from error

            if result.returncode != 0:
                stderr = result.stderr.decode("utf-8", errors="replace").strip()
                raise ScanError(f"gitleaks failed with exit code {result.returncode}: {stderr}")

            if not os.path.exists(report_path) or os.path.getsize(report_path) == 0:
                return []
            try:
                with open(report_path) as f:
                    report = json.load(f)
            except (OSError, ValueError) as error:
                raise ScanError(f"Unable to read gitleaks report: {error}") from error

        if not isinstance(report, list):
            return []
        return [Finding.from_dict(entry, file=path, commit=commit) for entry in report]


class BlobScanner:
    """
    Scans the blobs introduced by a commit range for secrets.

    Blob changes are listed with ``git log --raw``, and every blob is read
    through a single ``git cat-file --batch`` session owned by this scan call.
    """

    def __init__(self, detector: Detector, max_blob_size: int = 0, git_binary: str = "git"):
        self.detector = detector
        self.max_blob_size = max_blob_size
        self.git_binary = git_binary

    @staticmethod
    def build_range(base: str, rev: str) -> str:
        if not base:
            return f"{rev}^{{commit}}"
        return f"{base}^{{commit}}..{rev}^{{commit}}"

    def list_blob_changes(self, repository_path: str, environment: ScanEnvironment, base: str, rev: str) -> List[BlobChange]:
        repo = Repo(repository_path)
        env = {}
        if environment.alternate_object_dirs:
            env["GIT_ALTERNATE_OBJECT_DIRECTORIES"] = os.pathsep.join(environment.alternate_object_dirs)
        try:
            with repo.git.custom_environment(**env):
                output = repo.git.log(
                    "--raw",
                    "--root",
                    "--no-abbrev",
                    "--no-renames",
                    "--diff-merges=first-parent",
                    f"--format={COMMIT_MARKER}%H",
                    self.build_range(base, rev),
                )
        except GitCommandError as error:
            raise ScanError(f"Failed to list changes for {self.build_range(base, rev)}: {error}") from error
        return list(self.parse_raw_log(output))

    @staticmethod
    def parse_raw_log(output: str) -> Iterator[BlobChange]:
        """Yield each added or modified blob once, in log order."""
        seen = set()
        commit = ""
        for line in output.splitlines():
            if line.startswith(COMMIT_MARKER):
                commit = line[len(COMMIT_MARKER):].strip()
                continue
            if not line.startswith(":"):
                continue
            meta, _, path = line.partition("\t")
            fields = meta[1:].split(" ")
            if len(fields) < 5:
                continue
            new_mode, new_sha, status = fields[1], fields[3], fields[4]
            if status.startswith("D") or is_nil_sha(new_sha) or new_mode == GITLINK_MODE:
                continue
            if new_sha in seen:
                continue
            seen.add(new_sha)
            yield BlobChange(commit=commit, path=unquote_path(path), sha=new_sha)

    def scan_secrets(
        self,
        repository_path: str,
        environment: ScanEnvironment,
        base: str,
        rev: str,
        cancel: Optional[threading.Event] = None,
    ) -> List[Finding]:
        """
        Scan every blob added in ``(base, rev]``; an empty ``base`` scans the full history of ``rev``.

        ``cancel`` is checked before each blob read and each detector run. Raising
        out of the session block stops the cat-file backend.
        """
        changes = self.list_blob_changes(repository_path, environment, base, rev)
        log.debug(f"Scanning {len(changes)} blobs in {self.build_range(base, rev)}")

        findings: List[Finding] = []
        with open_batch_session(repository_path, environment.alternate_object_dirs, self.git_binary) as session:
            for change in changes:
                self._check_cancelled(cancel)
                try:
                    blob = session.read_blob(change.sha, size_limit=self.max_blob_size)
                except ObjectNotFoundError as error:
                    raise ScanError(f"Blob {change.sha} for {change.path} is missing: {error}") from error
                content = blob.read_all()
                if blob.content_size < blob.size:
                    log.debug(f"Only scanning the first {blob.content_size} of {blob.size} bytes of {change.path}")
                if b"\0" in content[:BINARY_SNIFF_SIZE]:
                    log.debug(f"Skipping binary file {change.path}")
                    continue
                self._check_cancelled(cancel)
                findings.extend(self.detector.detect(content, change.path, change.commit))
        return findings

    @staticmethod
    def _check_cancelled(cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise EvaluationCancelled("Secret scan was cancelled")
