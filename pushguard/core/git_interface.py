import os
from typing import List, Optional, Tuple

from git import Repo
from git.exc import GitCommandError, GitError

from pushguard.core import log
from pushguard.core.classes import ReferenceUpdate, ScanEnvironment
from pushguard.core.exceptions import FallbackDiscoveryError

BRANCH_PREFIX = "refs/heads/"


class GitRepository:
    """
    Git interface for the repository a push is being received into.

    FALLBACK BASE STRATEGY:
    A newly created reference has no previous value to diff against. To avoid
    scanning its complete history, the latest known state of the default
    branch is used as the base instead:

    1. The new reference IS the default branch -> no base (full scan)
    2. The default branch is updated in the same push
       - created or deleted in that push -> no base (full scan)
       - otherwise -> its value before the push
    3. The default branch exists in the repository -> its current tip
    4. Empty repository / no default branch -> no base (full scan)

    Merge-base search is intentionally not performed; commits that are
    already on the default branch are excluded by the range itself.
    """
    repo: Repo
    path: str

    def __init__(self, path: str, default_branch: Optional[str] = None):
        self.path = path
        self.repo = Repo(path)
        assert self.repo
        self._default_branch = default_branch

    @property
    def default_branch(self) -> Optional[str]:
        if self._default_branch is None:
            self._default_branch = self.get_default_branch_name()
        return self._default_branch

    def get_default_branch_name(self) -> Optional[str]:
        """
        Get the default branch name from the symbolic ``HEAD`` reference.

        Returns:
            Default branch name (e.g., 'main', 'master'), or None if HEAD is detached
        """
        try:
            reference = self.repo.head.reference
            default_branch = reference.path[len(BRANCH_PREFIX):] if reference.path.startswith(BRANCH_PREFIX) \
                else reference.name
            log.debug(f"Default branch detected: {default_branch}")
            return default_branch
        except (TypeError, ValueError, GitError) as error:
            # TypeError is raised by GitPython for a detached HEAD
            log.debug(f"Could not determine default branch from HEAD: {error}")
            return None

    def resolve_ref(self, ref: str, environment: Optional[ScanEnvironment] = None) -> Optional[str]:
        """Resolve a fully qualified reference to its object id, or None if it doesn't exist."""
        environment = environment or ScanEnvironment()
        try:
            with self.repo.git.custom_environment(**self._alternates_env(environment)):
                output = self.repo.git.rev_parse("--verify", "--quiet", f"{ref}^{{commit}}")
        except GitCommandError as error:
            if error.status == 1:
                return None
            raise FallbackDiscoveryError(f"Failed to resolve {ref}: {error}") from error
        sha = output.strip()
        return sha or None

    @staticmethod
    def _alternates_env(environment: ScanEnvironment) -> dict:
        if not environment.alternate_object_dirs:
            return {}
        return {"GIT_ALTERNATE_OBJECT_DIRECTORIES": os.pathsep.join(environment.alternate_object_dirs)}

    def find_fallback_base(
        self,
        environment: ScanEnvironment,
        ref_updates: List[ReferenceUpdate],
        current: ReferenceUpdate,
    ) -> Tuple[Optional[str], bool]:
        """
        Find a base commit to scan a newly created reference against.

        Returns:
            (sha, True) if a usable base exists, (None, False) if the reference
            has to be scanned from the root
        """
        default_branch = self.default_branch
        if not default_branch:
            log.debug("No default branch configured, no fallback base available")
            return None, False

        default_ref = BRANCH_PREFIX + default_branch
        if current.name == default_ref:
            log.debug(f"{current.name} is the default branch being created, no fallback base available")
            return None, False

        for ref_update in ref_updates:
            if ref_update.name != default_ref:
                continue
            if ref_update.is_creation or ref_update.is_deletion:
                log.debug(f"Default branch {default_ref} is created or deleted by this push")
                return None, False
            log.debug(f"Default branch {default_ref} is updated by this push, using its old value")
            return ref_update.old, True

        try:
            sha = self.resolve_ref(default_ref, environment)
        except GitError as error:
            raise FallbackDiscoveryError(f"Failed to read default branch {default_ref}: {error}") from error
        if sha is None:
            log.debug(f"Default branch {default_ref} doesn't exist yet")
            return None, False
        return sha, True
