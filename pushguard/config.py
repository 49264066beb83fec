import argparse
import os
from dataclasses import asdict, dataclass
from typing import List, Optional
from urllib.parse import urlparse

from pushguard import __version__

SETTINGS_SOURCES = ("git-config", "api")
DEFAULT_MAX_BLOB_SIZE = 10 * 1024 * 1024


@dataclass
class HookConfig:
    repo_path: str = "."
    repo_id: Optional[str] = None
    default_branch: Optional[str] = None
    settings_source: str = "git-config"
    api_url: Optional[str] = None
    api_token: Optional[str] = None
    timeout: int = 30
    scanning_enabled_default: bool = False
    max_blob_size: int = DEFAULT_MAX_BLOB_SIZE
    gitleaks_path: str = "gitleaks"
    gitleaks_config: Optional[str] = None
    redact: bool = True
    enable_debug: bool = False
    enable_json: bool = False
    enable_table: bool = False
    disable_blocking: bool = False
    version: str = __version__

    def __post_init__(self) -> None:
        """Validate configuration after initialization"""
        if self.timeout <= 0:
            raise ValueError("Timeout must be a positive integer")
        if self.max_blob_size < 0:
            raise ValueError("Max blob size can't be negative")
        if self.settings_source not in SETTINGS_SOURCES:
            raise ValueError(f"Settings source must be one of {', '.join(SETTINGS_SOURCES)}")
        if self.settings_source == "api":
            self._validate_api_url(self.api_url)
        if not self.repo_id:
            self.repo_id = os.path.abspath(self.repo_path)

    @staticmethod
    def _validate_api_url(url: Optional[str]) -> None:
        """Validate that the settings API URL is an http(s) URL"""
        if not url:
            raise ValueError("API URL is required when settings are read from the API")
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid API URL: {url}")

    @classmethod
    def from_args(cls, args_list: Optional[List[str]] = None) -> 'HookConfig':
        parser = create_argument_parser()
        args = parser.parse_args(args_list)

        # Get API token from env or args
        api_token = os.getenv("PUSHGUARD_API_TOKEN") or args.api_token
        repo_path = args.repo_path or os.getenv("GIT_DIR") or "."

        config_args = {
            'repo_path': repo_path,
            'repo_id': args.repo_id or os.getenv("PUSHGUARD_REPO_ID"),
            'default_branch': args.default_branch,
            'settings_source': args.settings_source,
            'api_url': args.api_url or os.getenv("PUSHGUARD_API_URL"),
            'api_token': api_token,
            'timeout': args.timeout,
            'scanning_enabled_default': args.scanning_enabled_default,
            'max_blob_size': args.max_blob_size,
            'gitleaks_path': args.gitleaks_path,
            'gitleaks_config': args.gitleaks_config,
            'redact': not args.no_redact,
            'enable_debug': args.enable_debug,
            'enable_json': args.enable_json,
            'enable_table': args.enable_table,
            'disable_blocking': args.disable_blocking,
        }

        return cls(**config_args)

    def to_dict(self) -> dict:
        data = asdict(self)
        if data.get("api_token"):
            data["api_token"] = "***"
        return data


def create_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pushguard-pre-receive",
        description="Pre-receive hook that scans pushed commits for leaked secrets. Reads '<old> <new> <ref>' "
                    "lines from stdin and rejects the push (exit code 1) when new secrets are found."
    )

    # Repository info
    repo_group = parser.add_argument_group('Repository')
    repo_group.add_argument(
        "--repo-path",
        dest="repo_path",
        metavar="<path>",
        help="Path to the repository receiving the push (defaults to GIT_DIR or the current directory)",
        required=False
    )
    repo_group.add_argument(
        "--repo-id",
        dest="repo_id",
        metavar="<id>",
        help="Repository identifier used for settings lookups (defaults to the absolute repository path)",
        required=False
    )
    repo_group.add_argument(
        "--default-branch",
        dest="default_branch",
        metavar="<name>",
        help="Default branch used as scan base for new references (defaults to the branch HEAD points to)",
        required=False
    )

    # Settings
    settings_group = parser.add_argument_group('Settings')
    settings_group.add_argument(
        "--settings-source",
        dest="settings_source",
        choices=SETTINGS_SOURCES,
        default="git-config",
        help="Where the per-repository 'secret scanning enabled' setting is read from"
    )
    settings_group.add_argument(
        "--api-url",
        dest="api_url",
        metavar="<url>",
        help="Settings API base URL (can also be set via PUSHGUARD_API_URL env var)",
        required=False
    )
    settings_group.add_argument(
        "--api-token",
        dest="api_token",
        metavar="<token>",
        help="Settings API token (can also be set via PUSHGUARD_API_TOKEN env var)",
        required=False
    )
    settings_group.add_argument(
        "--enable-by-default",
        dest="scanning_enabled_default",
        action="store_true",
        help="Scan repositories that have no explicit secret scanning setting"
    )

    # Scanning
    scan_group = parser.add_argument_group('Scanning')
    scan_group.add_argument(
        "--max-blob-size",
        dest="max_blob_size",
        metavar="<bytes>",
        type=int,
        default=DEFAULT_MAX_BLOB_SIZE,
        help="Only scan the first <bytes> of each file, 0 scans files completely"
    )
    scan_group.add_argument(
        "--gitleaks-path",
        dest="gitleaks_path",
        metavar="<path>",
        default="gitleaks",
        help="Path to the gitleaks binary"
    )
    scan_group.add_argument(
        "--gitleaks-config",
        dest="gitleaks_config",
        metavar="<path>",
        help="Custom gitleaks rule configuration",
        required=False
    )
    scan_group.add_argument(
        "--no-redact",
        dest="no_redact",
        action="store_true",
        help="Show detected secrets unredacted in the push output"
    )
    scan_group.add_argument(
        "--timeout",
        type=int,
        metavar="<seconds>",
        default=30,
        help="Timeout for settings API requests and each detector run"
    )

    # Output
    output_group = parser.add_argument_group('Output')
    output_group.add_argument(
        "--enable-json",
        dest="enable_json",
        action="store_true",
        help="Output findings as JSON"
    )
    output_group.add_argument(
        "--enable-table",
        dest="enable_table",
        action="store_true",
        help="Output findings as a table"
    )
    output_group.add_argument(
        "--enable-debug",
        dest="enable_debug",
        action="store_true",
        help="Enable debug logging"
    )
    output_group.add_argument(
        "--disable-blocking",
        dest="disable_blocking",
        action="store_true",
        help="Report findings without rejecting the push"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Show program's version number and exit"
    )

    return parser
