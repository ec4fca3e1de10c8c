"""Translate workflow errors into HTTP responses for the route layer."""
from fastapi import HTTPException, status
from services.order_workflow import (
    WorkflowError, OrderNotFoundError, StageMismatchError, ConcurrentTransitionError,
)
from services.assignment_service import AssignmentPermissionError
from services.template_service import TaskNotFoundError
from services.otp_service import OtpDeliveryError

# First match wins; anything else is a 400
_STATUS_BY_ERROR = [
    (OrderNotFoundError, status.HTTP_404_NOT_FOUND),
    (TaskNotFoundError, status.HTTP_404_NOT_FOUND),
    (StageMismatchError, status.HTTP_409_CONFLICT),
    (ConcurrentTransitionError, status.HTTP_409_CONFLICT),
    (AssignmentPermissionError, status.HTTP_403_FORBIDDEN),
    (OtpDeliveryError, status.HTTP_502_BAD_GATEWAY),
]


def http_error(e: WorkflowError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(e, error_type):
            return HTTPException(status_code=status_code, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
