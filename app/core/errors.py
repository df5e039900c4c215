import functools
from fastapi import HTTPException


class CoreError(Exception):
    """Base of the error values returned by core operations.

    Operations hand these back as the second item of a ``(result, err)``
    tuple. Only :class:`SessionError` is ever raised out of the core.
    """

    status_code = 500
    code = "core_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class SessionError(CoreError):
    status_code = 401
    code = "session_required"


class ValidationError(CoreError):
    status_code = 422
    code = "validation_failed"


class NotFoundError(CoreError):
    status_code = 404
    code = "not_found"


class PermissionDeniedError(CoreError):
    status_code = 403
    code = "permission_denied"


class ConflictError(CoreError):
    status_code = 409
    code = "conflict"

    def __init__(self, message: str | None = None, current=None):
        super().__init__(message)
        # row as it stands after the competing write won
        self.current = current


class TransientNetworkError(CoreError):
    status_code = 503
    code = "transient_network"


def to_http(err: CoreError) -> HTTPException:
    return HTTPException(status_code=err.status_code, detail=err.message)


def returns_errors(fn):
    """Hand store and bus failures back as ``(None, err)``.

    Adapters raise :class:`CoreError`; a core operation returns it instead.
    :class:`SessionError` still propagates.
    """
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except SessionError:
            raise
        except CoreError as e:
            return None, e
    return wrapper
