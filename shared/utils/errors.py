"""
shared/utils/errors.py
Domain error taxonomy. Service code raises these; main.py renders them
as {"detail", "code", ...extra} with the matching HTTP status.
"""

from typing import Any, Optional

from fastapi import status


class WorkflowError(Exception):
    code: str = "workflow_error"
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, **self.extra}


class ValidationFailed(WorkflowError):
    code = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFound(WorkflowError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class PreconditionFailed(WorkflowError):
    code = "precondition_failed"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, expected_status: Optional[str] = None, **extra: Any):
        if expected_status is not None:
            extra["expected_status"] = expected_status
        super().__init__(message, **extra)


class Forbidden(WorkflowError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class Unauthorized(WorkflowError):
    code = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED


class DependencyFailure(WorkflowError):
    code = "dependency_failure"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
