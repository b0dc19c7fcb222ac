"""
Structured logging for the validator.

structlog events are handed to the stdlib root handler unrendered and
rendered exactly once by its ProcessorFormatter, so validator events and
third-party records (uvicorn, httpx) share one format: JSON lines in
`json` mode, coloured key-value lines in `console` mode.

Patient identifiers are masked by a processor, so callers log
`patient_id=patient.id` and the raw value never reaches a handler.
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from immunization_validator.config.config import get_settings

# Event keys that carry a patient identifier
PII_KEYS = ("patient_id",)


def mask_patient_id(patient_id: str | None) -> str:
    """
    Mask a patient identifier.

    IDs of 8 characters or fewer are fully masked; longer ones keep the
    first and last four characters ("patient-12345" -> "pati****2345").
    Masking an already masked value returns it unchanged.
    """
    if not patient_id or len(patient_id) <= 8:
        return "****"
    return f"{patient_id[:4]}****{patient_id[-4:]}"


def mask_pii(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """structlog processor masking patient identifiers in any event."""
    for key in PII_KEYS:
        if key in event_dict:
            event_dict[key] = mask_patient_id(event_dict[key])
    return event_dict


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def configure_logging(log_format: str | None = None, stream: TextIO | None = None) -> None:
    """
    Route structlog through the stdlib root logger.

    Args:
        log_format: "json" or "console"; defaults to settings.log_format.
        stream: Output stream; defaults to stdout.
    """
    settings = get_settings()
    log_format = log_format or settings.log_format

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        mask_pii,
    ]
    if log_format == "json":
        shared_processors.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(log_format),
        ],
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(settings.log_level.upper())

    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger for a module, typically get_logger(__name__)."""
    return structlog.get_logger(name)


def log_request_context(request_id: str, method: str, path: str, **extra: Any) -> None:
    """Bind request fields to every log entry for the rest of this request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        http_method=method,
        http_path=path,
        **extra,
    )
