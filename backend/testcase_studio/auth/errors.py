"""Auth-specific errors."""


class AuthenticationError(Exception):
    """Raised when a bearer token cannot be verified.

    The error message is for internal logging only —
    the client always receives a generic 401.
    """
