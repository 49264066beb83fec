class PushGuardError(Exception):
    """Base exception for all pushguard errors"""
    pass


class APIFailure(PushGuardError):
    """Raised when a request to the settings API fails"""
    pass


class TransportError(PushGuardError):
    """Raised when the object store backend process or its pipe fails"""
    pass


class ProtocolMismatchError(PushGuardError):
    """Raised when the batch channel answers for a different object than requested"""
    pass


class UnexpectedObjectTypeError(PushGuardError):
    """Raised when the object store reports a different object kind than expected"""
    pass


class ObjectNotFoundError(PushGuardError):
    """Raised when the object store does not contain the requested object"""
    pass


class SessionUnusableError(PushGuardError):
    """Raised when reading from a batch session that has been torn down"""
    pass


class SessionBusyError(PushGuardError):
    """Raised when a read is requested while a previous read is still open"""
    pass


class SettingsError(PushGuardError):
    """Raised when a repository setting can't be looked up"""
    pass


class FallbackDiscoveryError(PushGuardError):
    """Raised when the fallback base for a new reference can't be determined"""
    pass


class ScanError(PushGuardError):
    """Raised when the secret scanner fails to scan a commit range"""
    pass


class EvaluationCancelled(PushGuardError):
    """Raised when the caller cancels an in-flight evaluation"""
    pass
