"""Structured logging: stdlib loggers rendered through structlog.

Modules log with ``logging.getLogger(__name__)``. Context bound with
``bind_request_context`` or ``bind_job_context`` (trace id, actor, job id,
fire time) is merged into every record emitted from the same task.
"""

import logging
import sys

import structlog

SERVICE_NAME = "cronwarden"

# Libraries whose INFO output drowns out the scheduler's own lines
NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "aiosqlite")


def _add_service(logger, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _pre_chain() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(log_level: str = "info", json_output: bool = False) -> None:
    """Route all logging through a single structlog formatter on stdout.

    JSON lines when ``json_output`` is set (deployed), coloured console
    output otherwise (local mode).
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )
    pre_chain = _pre_chain()

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_request_context(trace_id: str, actor: str | None = None) -> None:
    """Attach the request's trace id (and acting principal, if known)."""
    values = {"trace_id": trace_id}
    if actor:
        values["actor"] = actor
    structlog.contextvars.bind_contextvars(**values)


def bind_job_context(job_id: str, fire_time: str | None = None) -> None:
    """Attach the job (and occurrence) a scheduler task is working on."""
    values = {"job_id": job_id}
    if fire_time:
        values["fire_time"] = fire_time
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
