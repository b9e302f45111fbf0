class UploadError(Exception):
    """Base class for every failure the ingestion pipeline reports"""
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(UploadError):
    """Bad client input, rejected before any session is touched"""
    status_code = 400


class AttemptConsumedError(ValidationError):
    """The attempt id belongs to a session that already left UPLOADING"""
    status_code = 409


class UploadNotFoundError(UploadError):
    status_code = 404


class AuthorizationError(UploadError):
    """The signing backend could not issue a URL"""
    status_code = 503


class NotFoundError(UploadError):
    """The client reported completion but the object never landed"""
    status_code = 400


class SizeMismatchError(UploadError):
    status_code = 400


class InvalidTransitionError(UploadError):
    status_code = 409


class ProbeError(UploadError):
    pass


class TranscodeError(UploadError):
    pass


class TransferError(UploadError):
    pass


class ActivationTimeoutError(UploadError, TimeoutError):
    pass


class UnknownFatal(UploadError):
    """Wraps an unexpected exception, keeping its message"""

    def __init__(self, error):
        message = str(error) or error.__class__.__name__
        super().__init__(message)
        self.original = error


class RetryableTransferError(TransferError):
    """A rejection the backend may accept on a later attempt (408, 429, 5xx)"""
