class ApiError(Exception):
    """An error answered to the client as ``{"message": ...}``."""

    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'message': self.message}


class Unauthorized(ApiError):
    status_code = 401

    def __init__(self, message='Authentication required'):
        super().__init__(message)


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409
