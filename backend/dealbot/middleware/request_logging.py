import logging
import time

from fastapi import Request

from dealbot.config.settings import settings
from dealbot.utils.logger import get_logger

logger = get_logger("dealbot.requests")


async def log_requests_middleware(request: Request, call_next):
    """Log method, path, status and latency for every request; bodies only at DEBUG."""
    started = time.perf_counter()

    if logger.isEnabledFor(logging.DEBUG) and request.method in ("POST", "PUT", "PATCH"):
        body = await request.body()
        logger.debug(
            "→ %s %s body=%s",
            request.method,
            request.url.path,
            body[: settings.request_log_body_limit].decode("utf-8", errors="replace"),
        )

    response = await call_next(request)

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info("%s %s → %s (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
    return response
