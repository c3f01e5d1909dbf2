# services/errors.py
"""
Domain errors raised by the service layer.

Each error carries the HTTP status and a short machine-readable code; the
app-level error handler turns them into the usual {"error", "message"}
JSON envelope.
"""


class ServiceError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequestError(ServiceError):
    status_code = 400
    code = "bad_request"


class UnauthorizedError(ServiceError):
    status_code = 401
    code = "unauthorized"


class ForbiddenError(ServiceError):
    status_code = 403
    code = "forbidden"


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"
