# link-analytics-service/exceptions.py
"""
Domain exceptions raised by the service layer.

The API maps them onto HTTP responses in `main.py`:

    LinkNotFoundError       -> 404 (also used when the caller does not own the link)
    LinkExpiredError        -> 410
    SlugAlreadyExistsError  -> 422
    InvalidInputError       -> 422
    AuthenticationError     -> 401
"""


class ServiceError(Exception):
    """Base class for errors the API turns into structured responses."""

    status_code = 500

    def __init__(self, message: str = "Internal Server Error"):
        super().__init__(message)
        self.message = message


class LinkNotFoundError(ServiceError):
    status_code = 404

    def __init__(self, message: str = "Link not found."):
        super().__init__(message)


class LinkExpiredError(ServiceError):
    status_code = 410

    def __init__(self, message: str = "Link has expired."):
        super().__init__(message)


class SlugAlreadyExistsError(ServiceError):
    status_code = 422

    def __init__(
        self,
        message: str = "This custom slug is already taken. Please choose another one.",
    ):
        super().__init__(message)


class InvalidInputError(ServiceError):
    status_code = 422


class AuthenticationError(ServiceError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)
