"""Exception hierarchy for the MedWatch intake service."""


class MedWatchError(Exception):
    """Base exception for all intake errors."""


class QuestionnaireError(MedWatchError):
    """Raised when the question table cannot be loaded or is malformed."""


class CorrectionFailure(MedWatchError):
    """Raised when the text-correction call errors or times out mid-turn."""


class ReviewFailure(MedWatchError):
    """Raised when the pre-submission review call fails."""


class OutOfRangeCursor(MedWatchError):
    """Raised when a caller supplies a negative question cursor."""


class PersistenceFailure(MedWatchError):
    """Raised when a report cannot be stored. Safe to retry."""
