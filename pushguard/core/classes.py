import os
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple

__all__ = [
    "NIL_SHA",
    "is_nil_sha",
    "ReferenceUpdate",
    "ScanEnvironment",
    "PreReceiveInput",
    "Repository",
    "Finding",
    "ScanResult",
    "FallbackState",
    "FallbackBase",
    "HookOutput",
]

NIL_SHA = "0" * 40


def is_nil_sha(sha: str) -> bool:
    """True for the all-zero object id git uses for missing references (SHA-1 or SHA-256 length)."""
    return bool(sha) and set(sha) == {"0"}


@dataclass(frozen=True)
class ReferenceUpdate:
    """One line of a push: the reference and its old and new object ids."""

    name: str
    old: str
    new: str

    @property
    def is_deletion(self) -> bool:
        return is_nil_sha(self.new)

    @property
    def is_creation(self) -> bool:
        return is_nil_sha(self.old)

    @classmethod
    def from_line(cls, line: str) -> 'ReferenceUpdate':
        """Parse a ``<old> <new> <ref>`` line as git feeds it to a pre-receive hook."""
        parts = line.strip().split(" ")
        if len(parts) != 3 or not all(parts):
            raise ValueError(f"Invalid reference update line: {line!r}")
        old, new, name = parts
        return cls(name=name, old=old, new=new)

    def __str__(self):
        return f"{self.name} {self.old}..{self.new}"


@dataclass(frozen=True)
class ScanEnvironment:
    """
    Push-scoped context shared with every collaborator.

    ``alternate_object_dirs`` lists the quarantine and alternate object
    directories holding objects that were pushed but are not yet part of the
    repository's primary object store.
    """

    alternate_object_dirs: Tuple[str, ...] = ()

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> 'ScanEnvironment':
        environ = os.environ if environ is None else environ
        dirs: List[str] = []
        quarantine = environ.get("GIT_OBJECT_DIRECTORY") or environ.get("GIT_QUARANTINE_PATH")
        if quarantine:
            dirs.append(quarantine)
        alternates = environ.get("GIT_ALTERNATE_OBJECT_DIRECTORIES", "")
        for path in alternates.split(os.pathsep):
            if path and path not in dirs:
                dirs.append(path)
        return cls(alternate_object_dirs=tuple(dirs))

    def git_env(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Environment for a git child process that can see the pushed objects."""
        env = dict(os.environ if base is None else base)
        if self.alternate_object_dirs:
            env["GIT_ALTERNATE_OBJECT_DIRECTORIES"] = os.pathsep.join(self.alternate_object_dirs)
        return env


@dataclass
class PreReceiveInput:
    ref_updates: List[ReferenceUpdate] = field(default_factory=list)
    environment: ScanEnvironment = field(default_factory=ScanEnvironment)


@dataclass(frozen=True)
class Repository:
    id: str
    path: str
    default_branch: Optional[str] = None


@dataclass(frozen=True)
class Finding:
    """
    A single potential secret reported by the detector.

    Field names follow the gitleaks JSON report so findings can be built
    straight from a report entry with ``from_dict``.
    """

    rule_id: str
    file: str = ""
    commit: str = ""
    description: str = ""
    start_line: int = 0
    end_line: int = 0
    start_column: int = 0
    end_column: int = 0
    match: str = ""
    secret: str = ""
    entropy: float = 0.0
    fingerprint: str = ""
    tags: Tuple[str, ...] = ()

    REPORT_FIELDS: ClassVar[Dict[str, str]] = {
        "RuleID": "rule_id",
        "File": "file",
        "Commit": "commit",
        "Description": "description",
        "StartLine": "start_line",
        "EndLine": "end_line",
        "StartColumn": "start_column",
        "EndColumn": "end_column",
        "Match": "match",
        "Secret": "secret",
        "Entropy": "entropy",
        "Fingerprint": "fingerprint",
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], **overrides) -> 'Finding':
        kwargs: Dict[str, Any] = {}
        for report_key, attr in cls.REPORT_FIELDS.items():
            if data.get(report_key) not in (None, ""):
                kwargs[attr] = data[report_key]
        kwargs["tags"] = tuple(data.get("Tags") or ())
        kwargs.update({k: v for k, v in overrides.items() if v})
        if "rule_id" not in kwargs:
            kwargs["rule_id"] = "unknown"
        return cls(**kwargs)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["tags"] = list(self.tags)
        return data


@dataclass
class ScanResult:
    """Findings of all reference updates of one push, in scan order."""

    findings: List[Finding] = field(default_factory=list)

    def extend(self, findings: List[Finding]) -> None:
        self.findings.extend(findings)

    def has_results(self) -> bool:
        return len(self.findings) > 0


class FallbackState(Enum):
    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"
    NO_BASE = "no_base"


class FallbackBase:
    """
    Push-scoped memo for the base commit used when scanning new references.

    Starts unresolved; ``resolve`` may only be called once. ``NO_BASE`` means
    no usable base exists and the new reference must be scanned from the root.
    """

    def __init__(self):
        self.state = FallbackState.UNRESOLVED
        self._sha: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.state is not FallbackState.UNRESOLVED

    def resolve(self, sha: Optional[str]) -> None:
        if self.is_resolved:
            raise RuntimeError("Fallback base was already resolved for this push")
        if sha:
            self.state = FallbackState.RESOLVED
            self._sha = sha
        else:
            self.state = FallbackState.NO_BASE

    @property
    def base_rev(self) -> str:
        """The resolved base, or an empty string meaning scan from the root."""
        if self.state is FallbackState.UNRESOLVED:
            raise RuntimeError("Fallback base has not been resolved yet")
        return self._sha or ""

    def __repr__(self):
        return f"FallbackBase(state={self.state.value}, sha={self._sha!r})"


@dataclass
class HookOutput:
    """
    Decision of one hook evaluation.

    A policy block is signalled by ``error`` being set; evaluation failures
    are raised as exceptions and never show up here.
    """

    messages: List[str] = field(default_factory=list)
    error: Optional[str] = None
    findings: List[Finding] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        return {
            "blocked": self.blocked,
            "error": self.error,
            "messages": list(self.messages),
            "findings": [finding.to_dict() for finding in self.findings],
        }
