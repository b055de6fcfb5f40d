class AttendanceGateError(Exception):
    """Base class for attendance gate failures."""

class ProviderUnavailable(AttendanceGateError):
    """Camera or detection models could not be used. Fatal to the kiosk session."""

class LedgerReadFailure(AttendanceGateError):
    pass

class LedgerWriteFailure(AttendanceGateError):
    pass

class LedgerWriteTimeout(LedgerWriteFailure):
    """The write did not finish in time. It may still land in the store."""

class RosterError(AttendanceGateError):
    pass

class EmbeddingMismatch(RosterError, ValueError):
    """Provider embeddings and roster embeddings have different sizes."""

class ConfigError(AttendanceGateError, ValueError):
    pass
