import os
import sys

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {extra[component]} | {message}"

_logger_initialized = False
_sink_ids: list[int] = []


def setup_logger(log_level: str = "INFO", log_path: str | None = None, component: str = "searchengine"):
    global _logger_initialized, _sink_ids

    if not _logger_initialized:
        logger.remove()
        logger.configure(extra={"component": component})

        console_sink = logger.add(
            sys.stderr,
            colorize=True,
            level=log_level,
            format=LOG_FORMAT,
        )
        _sink_ids = [console_sink]

        if log_path:
            os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
            file_sink = logger.add(
                log_path,
                rotation="10 MB",
                retention="7 days",
                level=log_level,
                format=LOG_FORMAT,
            )
            _sink_ids.append(file_sink)

        _logger_initialized = True

    return logger.bind(component=component)
