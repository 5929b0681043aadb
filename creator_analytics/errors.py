"""Exceptions raised by the import pipeline."""


class IngestError(Exception):
    """Raised when ingestion cannot proceed."""


class UnsupportedFormatError(IngestError):
    """Raised when the uploaded file is not CSV, XLS or XLSX."""


class CorruptFileError(IngestError):
    """Raised when a spreadsheet container cannot be decoded."""


class EmptyImportError(IngestError):
    """Raised when no posts could be recovered from the file.

    The row-level problems found while normalizing are kept on ``errors``
    so the caller can show them next to the failure.
    """

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = list(errors or [])


class StorageUnavailableError(IngestError):
    """Raised when the storage layer rejects a read or write."""
