class SignflowError(Exception):
    """Base class for rejected operations. Nothing here is fatal."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(SignflowError):
    status_code = 404


class ValidationError(SignflowError):
    status_code = 422


class AuthorizationError(SignflowError):
    status_code = 403


class StateConflictError(SignflowError):
    status_code = 409
