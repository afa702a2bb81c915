"""
Logging setup and the process entry point.

Every entry point (the CLI, an embedding transport) calls configure_logging()
before creating an agent so log formatting and truncation are consistent.
"""

from __future__ import annotations

import logging

import structlog

# Log fields that may carry what the user or the model wrote.
_TEXT_FIELDS = ("text", "content", "user_message", "reply", "arguments")
_MAX_DISPLAY_LEN = 80


def _truncate_text_fields(logger, method_name, event_dict):
    """Structlog processor keeping conversation text out of logs beyond a preview."""
    for key in _TEXT_FIELDS:
        if key in event_dict:
            val = event_dict[key]
            if not isinstance(val, str):
                val = str(val)
            if len(val) > _MAX_DISPLAY_LEN:
                val = val[:_MAX_DISPLAY_LEN] + "... [truncated]"
            event_dict[key] = val
    return event_dict


_logging_configured = False


def configure_logging(level: int = logging.WARNING) -> None:
    """Configure structlog over standard-library logging.

    Safe to call more than once; later calls only adjust the level.
    """
    global _logging_configured  # noqa: PLW0603
    logging.getLogger().setLevel(level)
    if _logging_configured:
        return
    _logging_configured = True

    logging.basicConfig(format="%(message)s", level=level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _truncate_text_fields,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def main() -> None:
    """Run the command-line interface."""
    from studybuddy.cli.app import cli

    cli()


if __name__ == "__main__":
    main()
