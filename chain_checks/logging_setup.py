from __future__ import annotations

import logging
from pathlib import Path
from typing import IO

import structlog


_log_file: IO[str] | None = None


def close_log_output() -> None:
    """Close the file opened by a previous configure_logging(output=...)."""
    global _log_file
    if _log_file is not None:
        _log_file.close()
        _log_file = None


def configure_logging(level: str = "INFO", *, output: str | None = None) -> None:
    """
    Console output by default; JSON lines when writing to a file.
    """
    global _log_file
    level_no = getattr(logging, str(level).upper(), logging.INFO)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="ISO"),
    ]
    close_log_output()
    if output:
        path = Path(output)
        path.parent.mkdir(parents=True, exist_ok=True)
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        _log_file = path.open("a", encoding="utf-8")
        factory = structlog.WriteLoggerFactory(file=_log_file)
    else:
        processors.append(structlog.dev.ConsoleRenderer())
        factory = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
        logger_factory=factory,
        cache_logger_on_first_use=True,
    )

    # Stdlib loggers (uvicorn, httpx). The Telegram token is part of request URLs.
    logging.basicConfig(level=level_no, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
