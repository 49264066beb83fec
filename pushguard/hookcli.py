import signal
import sys
import threading
import traceback
from contextlib import contextmanager
from typing import Iterator, List, Optional, TextIO

from dotenv import load_dotenv
from git import InvalidGitRepositoryError, NoSuchPathError

from pushguard.config import HookConfig
from pushguard.core.classes import PreReceiveInput, ReferenceUpdate, Repository, ScanEnvironment
from pushguard.core.exceptions import EvaluationCancelled, PushGuardError
from pushguard.core.cli_client import CliClient
from pushguard.core.git_interface import GitRepository
from pushguard.core.logging import initialize_logging, set_debug_mode
from pushguard.core.scan_gate import SecretScanGate
from pushguard.core.scanner import BlobScanner, GitleaksDetector
from pushguard.core.settings import ApiSettings, GitConfigSettings, SettingsStore
from pushguard.output import OutputHandler

pushguard_logger, log = initialize_logging()

load_dotenv()

EXIT_INTERRUPTED = 2
EXIT_ERROR = 3

CANCEL_SIGNALS = tuple(getattr(signal, name) for name in ("SIGTERM", "SIGHUP") if hasattr(signal, name))


def cli():
    try:
        sys.exit(main_code())
    except KeyboardInterrupt:
        log.info("Keyboard Interrupt detected, exiting")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as error:
        log.error("Unexpected error when running the pre-receive hook")
        log.error(error)
        traceback.print_exc()
        sys.exit(EXIT_ERROR)


def read_ref_updates(stream: TextIO) -> List[ReferenceUpdate]:
    ref_updates = []
    for line in stream:
        if not line.strip():
            continue
        ref_updates.append(ReferenceUpdate.from_line(line))
    return ref_updates


@contextmanager
def cancel_on_signals(cancel: threading.Event) -> Iterator[threading.Event]:
    """Set ``cancel`` when the server terminates the hook, restoring the previous handlers on exit."""
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def handle(signum, frame):
        log.warning(f"Received {signal.Signals(signum).name}, cancelling secret scan")
        cancel.set()

    previous = {sig: signal.signal(sig, handle) for sig in CANCEL_SIGNALS}
    try:
        yield cancel
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def create_settings_store(config: HookConfig) -> SettingsStore:
    if config.settings_source == "api":
        client = CliClient(config.api_url, token=config.api_token, timeout=config.timeout)
        return ApiSettings(client)
    return GitConfigSettings(config.repo_path)


def create_gate(config: HookConfig, git_repo: GitRepository) -> SecretScanGate:
    detector = GitleaksDetector(
        gitleaks_path=config.gitleaks_path,
        config_path=config.gitleaks_config,
        redact=config.redact,
        timeout=config.timeout,
    )
    return SecretScanGate(
        settings=create_settings_store(config),
        fallback_finder=git_repo,
        scanner=BlobScanner(detector, max_blob_size=config.max_blob_size),
        scanning_enabled_default=config.scanning_enabled_default,
    )


def main_code(args_list: Optional[List[str]] = None, stdin: Optional[TextIO] = None) -> int:
    config = HookConfig.from_args(args_list)
    if config.enable_debug:
        set_debug_mode(True)
        log.debug("Debug logging enabled")
    log.debug(f"Starting pushguard version {config.version}")
    log.debug(f"config: {config.to_dict()}")

    try:
        git_repo = GitRepository(config.repo_path, default_branch=config.default_branch)
    except (InvalidGitRepositoryError, NoSuchPathError) as error:
        log.error(f"{config.repo_path} is not a git repository: {error}")
        return EXIT_ERROR

    try:
        ref_updates = read_ref_updates(stdin or sys.stdin)
    except ValueError as error:
        log.error(f"Unable to parse reference updates: {error}")
        return EXIT_ERROR

    hook_input = PreReceiveInput(ref_updates=ref_updates, environment=ScanEnvironment.from_environ())
    repo = Repository(id=config.repo_id, path=config.repo_path, default_branch=git_repo.default_branch)
    log.debug(f"Evaluating {len(ref_updates)} reference updates for {repo.id}")

    gate = create_gate(config, git_repo)
    try:
        with cancel_on_signals(threading.Event()) as cancel:
            hook_output = gate.evaluate(repo, hook_input, cancel=cancel)
    except EvaluationCancelled as error:
        log.error(f"{error}, rejecting push")
        return EXIT_INTERRUPTED
    except PushGuardError as error:
        log.error(f"Secret scan failed, rejecting push: {error}")
        return EXIT_ERROR

    output_handler = OutputHandler(config)
    output_handler.handle_output(hook_output)
    return output_handler.return_exit_code(hook_output)


if __name__ == '__main__':
    cli()
