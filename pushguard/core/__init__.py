import logging

from pushguard import __version__

__all__ = [
    "log",
    "__version__",
]

version = __version__
log = logging.getLogger("pushguard")
