import logging
import sys
from typing import Optional, TextIO

# hook stderr reaches the pusher behind a "remote: " prefix
HOOK_LOG_FORMAT = "pushguard: %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"

THIRD_PARTY_LOGGERS = ("urllib3", "git")


def initialize_logging(
    level: int = logging.INFO,
    format: str = HOOK_LOG_FORMAT,
    pushguard_logger_name: str = "pushguard",
    cli_logger_name: str = "pushguard.cli",
    stream: Optional[TextIO] = None,
) -> tuple[logging.Logger, logging.Logger]:
    """Initialize logging for the pre-receive hook

    Returns both the engine and CLI loggers. The CLI logger is a child of the
    engine logger, so records of both end up on the same stderr handler.
    """
    logging.basicConfig(level=level, format=format, stream=stream or sys.stderr)

    pushguard_logger = logging.getLogger(pushguard_logger_name)
    pushguard_logger.setLevel(level)

    cli_logger = logging.getLogger(cli_logger_name)
    cli_logger.setLevel(level)

    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return pushguard_logger, cli_logger


def set_debug_mode(enable: bool = False) -> None:
    """Toggle debug logging for pushguard, GitPython and the settings API client"""
    level = logging.DEBUG if enable else logging.INFO
    logging.getLogger("pushguard").setLevel(level)
    logging.getLogger("pushguard.cli").setLevel(level)

    third_party_level = logging.DEBUG if enable else logging.WARNING
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

    if enable:
        formatter = logging.Formatter(DEBUG_LOG_FORMAT)
        for handler in logging.getLogger().handlers:
            handler.setFormatter(formatter)
