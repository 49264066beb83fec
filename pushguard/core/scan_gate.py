"""
Pre-receive secret scanning gate.

``SecretScanGate.evaluate`` decides per push whether it has to be blocked:

  1. settings check - scanning disabled for the repository -> allow
  2. per reference update, in push order
       - deletions are never scanned
       - existing references are scanned from their old value
       - new references are scanned from the push-wide fallback base,
         discovered at most once per push
  3. findings -> hook messages + blocking error on the returned output

Collaborator failures are raised as exceptions; a block is never raised.
"""
import threading
from typing import Optional

from pushguard.core import log
from pushguard.core.classes import (
    FallbackBase,
    HookOutput,
    PreReceiveInput,
    ReferenceUpdate,
    Repository,
    ScanResult,
)
from pushguard.core.exceptions import (
    EvaluationCancelled,
    FallbackDiscoveryError,
    PushGuardError,
    ScanError,
    SettingsError,
)
from pushguard.core.messages import Messages
from pushguard.core.settings import (
    DEFAULT_SECRET_SCANNING_ENABLED,
    KEY_SECRET_SCANNING_ENABLED,
    SettingsStore,
)

BLOCKED_MESSAGE = "Changes blocked by security scan results"


class SecretScanGate:
    def __init__(
        self,
        settings: SettingsStore,
        fallback_finder,
        scanner,
        scanning_enabled_default: bool = DEFAULT_SECRET_SCANNING_ENABLED,
    ):
        """
        :param settings: SettingsStore - repository settings lookup
        :param fallback_finder: object with ``find_fallback_base(environment, ref_updates, current)``
        :param scanner: object with ``scan_secrets(repository_path, environment, base, rev, cancel=None)``
        :param scanning_enabled_default: bool - used when the repository has no setting
        """
        self.settings = settings
        self.fallback_finder = fallback_finder
        self.scanner = scanner
        self.scanning_enabled_default = scanning_enabled_default

    def evaluate(
        self,
        repo: Repository,
        hook_input: PreReceiveInput,
        output: Optional[HookOutput] = None,
        cancel: Optional[threading.Event] = None,
    ) -> HookOutput:
        output = output if output is not None else HookOutput()
        self._check_cancelled(cancel)

        try:
            scanning_enabled = self.settings.get_bool(
                repo.id,
                KEY_SECRET_SCANNING_ENABLED,
                self.scanning_enabled_default,
            )
        except PushGuardError:
            raise
        except Exception as error:
            raise SettingsError(f"Failed to check settings whether secret scanning is enabled: {error}") from error
        if not scanning_enabled:
            log.debug(f"Secret scanning is disabled for {repo.id}")
            return output

        scan_result = self.scan_secrets(repo, hook_input, cancel)
        if not scan_result.has_results():
            return output

        output.findings.extend(scan_result.findings)
        output.messages.extend(Messages.create_hook_messages(scan_result.findings))
        output.messages.extend(["", ""])
        output.error = BLOCKED_MESSAGE
        return output

    def scan_secrets(
        self,
        repo: Repository,
        hook_input: PreReceiveInput,
        cancel: Optional[threading.Event] = None,
    ) -> ScanResult:
        fallback = FallbackBase()
        result = ScanResult()

        for ref_update in hook_input.ref_updates:
            self._check_cancelled(cancel)

            if ref_update.is_deletion:
                log.debug(f"{ref_update.name}: skip deleted reference")
                continue

            base_rev = ref_update.old
            if ref_update.is_creation:
                if not fallback.is_resolved:
                    fallback.resolve(self._find_fallback_base(hook_input, ref_update))
                base_rev = fallback.base_rev
                log.debug(f"{ref_update.name}: new reference, use rev {base_rev!r} as base for secret scanning")

            log.debug(f"{ref_update.name}: scan for secrets")
            try:
                findings = self.scanner.scan_secrets(
                    repo.path, hook_input.environment, base_rev, ref_update.new, cancel=cancel)
            except EvaluationCancelled:
                raise
            except Exception as error:
                raise ScanError(f"Failed to detect secret leaks in {ref_update.name}: {error}") from error

            if not findings:
                log.debug(f"{ref_update.name}: no new secrets found")
                continue

            log.debug(f"{ref_update.name}: found {len(findings)} new secrets")
            result.extend(findings)

        return result

    def _find_fallback_base(self, hook_input: PreReceiveInput, ref_update: ReferenceUpdate) -> Optional[str]:
        try:
            sha, available = self.fallback_finder.find_fallback_base(
                hook_input.environment,
                hook_input.ref_updates,
                ref_update,
            )
        except Exception as error:
            raise FallbackDiscoveryError(f"Failed to get fallback sha for {ref_update.name}: {error}") from error

        if available:
            log.debug(f"{ref_update.name}: found fallback sha {sha!r}")
            return sha
        log.debug(f"{ref_update.name}: no fallback sha available, do full scan instead")
        return None

    @staticmethod
    def _check_cancelled(cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise EvaluationCancelled("Secret scan evaluation was cancelled")
