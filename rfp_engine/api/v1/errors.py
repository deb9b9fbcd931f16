"""Mapping of application errors onto HTTP responses."""

from fastapi import HTTPException, status

from rfp_engine.core.exceptions import (
    AppError,
    PipelineAlreadyRunningError,
    PipelineRunNotFoundError,
    QuestionNotFoundError,
    ValidationError,
)

_STATUS_BY_ERROR = (
    (QuestionNotFoundError, status.HTTP_404_NOT_FOUND),
    (PipelineRunNotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (PipelineAlreadyRunningError, status.HTTP_409_CONFLICT),
)


def to_http_exception(error: AppError) -> HTTPException:
    """HTTPException for an application error; unknown errors become 500."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(error),
    )
