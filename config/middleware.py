import logging
import time

logger = logging.getLogger(__name__)


class RequestTimingMiddleware:
    """
    Adds X-Latency-Ms to every response and logs the request latency at DEBUG.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        start = time.perf_counter()
        response = self.get_response(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        response["X-Latency-Ms"] = f"{elapsed_ms:.2f}"
        logger.debug(
            "Request handled",
            extra={"method": request.method, "path": request.path, "status": response.status_code, "latency_ms": round(elapsed_ms, 2)},
        )
        return response
