from fastapi import HTTPException, status


class StoryloomError(Exception):
    """Base class for errors the caller is expected to recover from."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(StoryloomError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class NotAuthorized(StoryloomError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not authorized"


class InvalidArgument(StoryloomError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Invalid argument"


class InvalidStateTransition(StoryloomError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Invalid state transition"


CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)

USER_NOT_FOUND_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="User not found",
    headers={"WWW-Authenticate": "Bearer"},
)

INACTIVE_USER_EXCEPTION = HTTPException(
    status_code=status.HTTP_403_FORBIDDEN,
    detail="Your account is not active",
)
