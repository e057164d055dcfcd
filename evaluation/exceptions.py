import logging
from datetime import datetime, timezone

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class EvaluationError(Exception):
    code = "EVALUATION_ERROR"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message="", **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(EvaluationError):
    code = "VALIDATION_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST


class AuthorizationError(EvaluationError):
    code = "FORBIDDEN"
    http_status = status.HTTP_403_FORBIDDEN


class NotFoundError(EvaluationError):
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND


class ConsistencyError(EvaluationError):
    """An invariant is violated in stored data and cannot be resolved safely."""

    code = "CONSISTENCY_ERROR"
    http_status = status.HTTP_409_CONFLICT


def _now_iso():
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def exception_handler(exc, context):
    """
    DRF exception handler: domain errors become {"error": {code, message}} bodies,
    everything else goes through DRF's default handling.
    """
    if isinstance(exc, EvaluationError):
        if isinstance(exc, ConsistencyError):
            logger.error("Consistency error surfaced to caller: %s", exc.message, extra=exc.context)
        return Response(
            {
                "error": {"code": exc.code, "message": exc.message},
                "generated_at": _now_iso(),
            },
            status=exc.http_status,
        )
    return drf_exception_handler(exc, context)
