"""Error taxonomy for the share pipelines.

Every error carries the HTTP status it maps to and a ``detail`` that is safe
to show to the caller. Internal context belongs in the logs, not in ``detail``.
"""


class ShareError(Exception):
    status_code: int = 500
    default_detail: str = "An internal server error occurred."

    def __init__(self, detail: str | None = None, *, status_code: int | None = None):
        self.detail = detail or self.default_detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.detail)


class ValidationError(ShareError):
    status_code = 400
    default_detail = "Invalid upload request."


class MalformedToken(ValidationError):
    default_detail = "Invalid download link format."


class AuthenticationRequired(ShareError):
    status_code = 401
    default_detail = "Authentication required. Please log in."


class NotFound(ShareError):
    status_code = 404
    default_detail = "Invalid or expired link."


class Forbidden(ShareError):
    status_code = 403
    default_detail = "Access denied."


class Expired(ShareError):
    status_code = 410
    default_detail = "Download link has expired."


class Revoked(ShareError):
    status_code = 410
    default_detail = "Download link has been revoked."


class IntegrityError(ShareError):
    """Authentication tag did not verify: the stored object was altered."""

    status_code = 500
    default_detail = "An internal server error occurred while processing your download."


class StorageInconsistency(ShareError):
    status_code = 503
    default_detail = "File unavailable. Please contact support."


class TransientIO(ShareError):
    status_code = 503
    default_detail = "Storage is temporarily unavailable."


class BlobNotFound(ShareError):
    status_code = 404
    default_detail = "File not found in storage."


class KeyConfigurationError(ShareError):
    default_detail = "Server configuration error. Please try again later."
