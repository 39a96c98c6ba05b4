"""Centralized structured logging configuration using structlog."""

import json
import logging
import re
import sys
from typing import Any

import structlog


# Patterns that look like credentials in log output
_SECRET_PATTERNS = [
    re.compile(r"sk-[A-Za-z0-9_-]{10,}"),           # OpenAI / Anthropic style
    re.compile(r"Bearer\s+[A-Za-z0-9_\-.]{10,}"),    # Authorization headers
    re.compile(r"sk-or-[A-Za-z0-9_-]{10,}"),         # OpenRouter
    re.compile(r"AIza[A-Za-z0-9_-]{20,}"),           # Google API keys
    re.compile(r"ghp_[A-Za-z0-9]{10,}"),             # GitHub PAT
]

_CONVERSATION_KEYS = ("conversation_id", "turn_id")


def mask_secret(value: str) -> str:
    """Mask a secret value, keeping first 4 and last 4 chars visible.

    >>> mask_secret("sk-abc123456789xyz")
    'sk-a****9xyz'
    """
    if len(value) <= 8:
        return "****"
    return value[:4] + "****" + value[-4:]


def _redact_value(value: str) -> str:
    """Replace any secret-looking substrings in *value*."""
    for pattern in _SECRET_PATTERNS:
        value = pattern.sub(lambda m: mask_secret(m.group(0)), value)
    return value


def _redact_nested(value: Any) -> Any:
    if isinstance(value, str):
        return _redact_value(value)
    if isinstance(value, dict):
        return {k: _redact_nested(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact_nested(v) for v in value]
    return value


def _redact_event(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Structlog processor that redacts secrets, including inside tool arguments and params."""
    for key, val in event_dict.items():
        event_dict[key] = _redact_nested(val)
    return event_dict


def setup_logging(json_output: bool = True, level: str = "INFO") -> None:
    """Configure structlog on top of the stdlib ``parley`` logger hierarchy.

    Args:
        json_output: Emit JSON lines when True, console-formatted lines otherwise.
        level: Log level applied to the ``parley`` root logger.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _redact_event,
    ]

    if json_output:
        renderer = structlog.processors.JSONRenderer(
            serializer=lambda obj, **kw: json.dumps(obj, ensure_ascii=False, **kw)
        )
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger("parley")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper()))


def get_logger(name: str = "parley") -> structlog.stdlib.BoundLogger:
    """Return a structlog bound logger for the given name."""
    return structlog.get_logger(name)


def bind_conversation(conversation_id: str, **fields: Any) -> None:
    """Bind conversation-scoped fields to every log line of the current task."""
    structlog.contextvars.bind_contextvars(conversation_id=conversation_id, **fields)


def unbind_conversation(*extra_keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*_CONVERSATION_KEYS, *extra_keys)
