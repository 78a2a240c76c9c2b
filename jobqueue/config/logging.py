import logging
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog

from .settings import Settings, settings


def _build_processors(debug: bool) -> list[Any]:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
    ]
    if debug:
        # Worker and API logs interleave on a dev console; show where each came from
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                ]
            )
        )
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())
    return processors


def setup_logging(app_settings: Settings | None = None) -> None:
    """
    Configure structlog for the API process or a worker process.

    The worker CLI passes its own settings copy so per-process overrides
    apply; the API uses the module-level settings.
    """
    app_settings = app_settings or settings
    level = getattr(logging, app_settings.log_level)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=_build_processors(app_settings.debug),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def add_request_context(request_id: str, **context: Any) -> None:
    """Replace the log context with the current HTTP request's fields."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **context)


def job_log_context(
    job_id: str, job_type: str, **context: Any
) -> AbstractContextManager:
    """
    Bind a claimed job's identity to every log line emitted while it runs,
    including lines from store, policy and handler code.

    The previous context is restored on exit.
    """
    return structlog.contextvars.bound_contextvars(
        job_id=job_id, job_type=job_type, **context
    )
