"""Failure taxonomy for the intake pipeline."""


class IntakeError(Exception):
    """Base class for every pipeline failure."""
    pass


class InvalidFileType(IntakeError):
    def __init__(self, message: str = "Invalid file type. Please upload an image file."):
        super().__init__(message)


class FileTooLarge(IntakeError):
    def __init__(self, message: str = "File too large. Please upload an image smaller than 10MB."):
        super().__init__(message)


class NoTextDetected(IntakeError):
    def __init__(self, message: str = "No text detected in image"):
        super().__init__(message)


class EngineUnavailable(IntakeError):
    """Raised by an OCR engine that cannot run (missing key, binary, or library)."""
    pass


class AIUnavailable(IntakeError):
    """Raised when the AI completion endpoint is unconfigured or the call fails."""
    pass


class MalformedAIResponse(IntakeError):
    """Raised when an AI reply cannot be parsed into the expected shape."""
    pass


class RegionNotSupported(IntakeError):
    def __init__(self, message: str = "region not supported"):
        super().__init__(message)


class ApiKeyMissing(IntakeError):
    def __init__(self, message: str = "validation API key not configured"):
        super().__init__(message)


class FieldValidationError(IntakeError):
    """Raised by a single field validation; always caught per field."""
    pass


class DuplicateQueryFailure(IntakeError):
    """Raised when the candidate receipt query fails; duplicate check fails open."""
    pass


class SaveFailure(IntakeError):
    """Raised when persisting a receipt fails; surfaced to the caller for retry."""
    pass
