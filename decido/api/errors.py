"""Translation of engine exceptions into HTTP errors."""

from fastapi import HTTPException, status

from ..services.errors import (
    ConflictError,
    EngineError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    OperationTimeoutError,
    ValidationError,
)

STATUS_BY_ERROR: dict[type[EngineError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    InvalidStateError: status.HTTP_409_CONFLICT,
    ConflictError: status.HTTP_409_CONFLICT,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    OperationTimeoutError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def to_http_exception(error: EngineError) -> HTTPException:
    for error_type, status_code in STATUS_BY_ERROR.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=str(error),
    )
