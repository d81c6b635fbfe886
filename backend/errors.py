class ConversionError(Exception):
    """Base error for a failed sheet conversion. Carries the HTTP status to answer with."""

    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(ConversionError):
    """Raised when the uploaded image payload is missing, malformed or empty."""

    status_code = 400


class TranscriptionError(ConversionError):
    """Raised when Gemini fails or returns text that is not JSON."""


class FormatError(ConversionError):
    """Raised when the transcribed JSON is not a table we understand."""


class SerializationError(ConversionError):
    """Raised when the spreadsheet cannot be written or saved."""
