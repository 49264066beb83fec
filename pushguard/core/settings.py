"""
Repository settings lookups.

The gate only consumes one boolean key. Two stores are provided: the
repository's own git config (the default for plain git servers) and a
settings API for servers that keep repository settings in a database.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import quote

from git import Repo
from git.exc import GitError

from .cli_client import CliClient
from .exceptions import APIFailure, SettingsError

log = logging.getLogger("pushguard")

KEY_SECRET_SCANNING_ENABLED = "secret_scanning_enabled"
DEFAULT_SECRET_SCANNING_ENABLED = False

GIT_CONFIG_SECTION = "pushguard"
GIT_CONFIG_OPTIONS = {
    KEY_SECRET_SCANNING_ENABLED: "secretScanningEnabled",
}

TRUE_VALUES = {"true", "yes", "on", "1"}
FALSE_VALUES = {"false", "no", "off", "0", ""}


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ValueError(f"'{value}' is not a boolean value")


class SettingsStore(ABC):
    @abstractmethod
    def get_bool(self, repo_id: str, key: str, default: bool) -> bool:
        """Return the boolean setting ``key`` for a repository, or ``default`` when unset"""
        pass


class GitConfigSettings(SettingsStore):
    """Settings stored in the ``[pushguard]`` section of the repository's git config."""

    def __init__(self, repo_path: str):
        self.repo_path = repo_path

    def get_bool(self, repo_id: str, key: str, default: bool) -> bool:
        option = GIT_CONFIG_OPTIONS.get(key, key)
        try:
            reader = Repo(self.repo_path).config_reader()
            if not reader.has_option(GIT_CONFIG_SECTION, option):
                log.debug(f"{GIT_CONFIG_SECTION}.{option} not set for {repo_id}, using default {default}")
                return default
            value = reader.get_value(GIT_CONFIG_SECTION, option)
        except (GitError, OSError) as error:
            raise SettingsError(f"Failed to read git config of {repo_id}: {error}") from error

        try:
            return parse_bool(value)
        except ValueError as error:
            raise SettingsError(f"Invalid value for {GIT_CONFIG_SECTION}.{option}: {error}") from error


class ApiSettings(SettingsStore):
    """Settings served by ``GET <api>/repos/<repo_id>/settings/<key>`` as ``{"value": ...}``."""

    def __init__(self, client: CliClient):
        self.client = client

    def get_bool(self, repo_id: str, key: str, default: bool) -> bool:
        path = f"repos/{quote(repo_id, safe='')}/settings/{quote(key, safe='')}"
        try:
            response = self.client.request(path)
        except APIFailure as error:
            response = getattr(error.__cause__, "response", None)
            if response is not None and response.status_code == 404:
                log.debug(f"Setting {key} not set for {repo_id}, using default {default}")
                return default
            raise SettingsError(f"Failed to get setting {key} for {repo_id}: {error}") from error

        try:
            data = response.json()
            value = data.get("value")
        except (ValueError, AttributeError) as error:
            raise SettingsError(f"Invalid settings response for {key}: {error}") from error
        if value is None:
            return default
        try:
            return parse_bool(value)
        except ValueError as error:
            raise SettingsError(f"Invalid value for setting {key}: {error}") from error
