from fastapi import status


class DocumentError(Exception):
    """Base class for document lifecycle failures; carries the HTTP status to report."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DocumentError):
    status_code = status.HTTP_400_BAD_REQUEST


class TooLarge(ValidationError):
    status_code = 413


class AuthError(DocumentError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(DocumentError):
    status_code = status.HTTP_404_NOT_FOUND


class NotAnalyzed(DocumentError):
    status_code = status.HTTP_409_CONFLICT


class ProviderError(DocumentError):
    status_code = status.HTTP_502_BAD_GATEWAY


class AnalysisTimeoutError(DocumentError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT


class StorageError(DocumentError):
    status_code = status.HTTP_502_BAD_GATEWAY


class DeleteError(DocumentError):
    pass


class BlobExists(StorageError):
    status_code = status.HTTP_409_CONFLICT
