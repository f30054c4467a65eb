"""Error kinds raised at the core boundaries."""


class CBTError(Exception):
    """Base class for exam core errors."""


class InvalidAnswerValue(CBTError, ValueError):
    """Answer outside options 1-4, or for a question not in the session."""


class NoActiveSession(CBTError):
    """An operation needs a current exam session and there is none."""


class PersistenceFailure(CBTError):
    """Key-value storage read or write failed."""


class CorruptCatalog(CBTError):
    """Stored question catalog does not parse as a list of questions."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw
