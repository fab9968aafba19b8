"""Exceptions raised by the organizing pipeline."""

from typing import Optional


class OrganizerError(Exception):
    """Base class for organizing pipeline failures."""


class WatchSetupError(OrganizerError):
    """Native change notification could not be set up for a folder."""


class ExtractionError(OrganizerError):
    """Reading or decoding a file's content failed."""


class ClassificationError(OrganizerError):
    """Base class for classification backend failures."""

    retryable = True


class TransportError(ClassificationError):
    """Network failure, timeout or a retryable HTTP status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RejectedError(ClassificationError):
    """The backend refused the request (HTTP 400, 401 or 404)."""

    retryable = False

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class InvalidResponseError(ClassificationError):
    """The backend answered 200 but without the expected envelope."""


class ResponseParseError(ClassificationError):
    """The backend's text did not contain a usable classification."""

    retryable = False


class MoveError(OrganizerError):
    """Creating the destination or moving the file failed."""


class UndoError(OrganizerError):
    """A recorded move could not be reversed."""

    def __init__(self, message: str, operation=None):
        super().__init__(message)
        self.operation = operation
