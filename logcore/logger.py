"""
LogCore: structured JSON logging shared by the Sentinel hub and agent.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class JSONFormatter(logging.Formatter):
    """
    Formatter that renders each record as a single JSON line.

    Output format:
    {
        "timestamp": "2026-02-08T20:30:00.123456Z",
        "level": "INFO",
        "logger": "sentinel_hub.scheduler",
        "service": "sentinel-hub",
        "message": "Collection cycle finished",
        "context": {"online": 3, "offline": 1}
    }
    """

    def __init__(self, service: Optional[str] = None):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data = {
            'timestamp': timestamp.strftime('%Y-%m-%dT%H:%M:%S.%fZ'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        if self.service:
            log_data['service'] = self.service

        # logger.info(..., extra={'context': {...}})
        context = getattr(record, 'context', None)
        if context:
            log_data['context'] = context

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': self.formatException(record.exc_info)
            }

        if record.levelno <= logging.DEBUG:
            log_data['source'] = {
                'file': record.pathname,
                'line': record.lineno,
                'function': record.funcName
            }

        return json.dumps(log_data, default=str)


def _build_formatter(use_json: bool, service: Optional[str]) -> logging.Formatter:
    if use_json:
        return JSONFormatter(service=service)
    return logging.Formatter(TEXT_FORMAT)


def get_logger(
    name: str,
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    use_json: bool = True
) -> logging.Logger:
    """
    Get a logger with its own console (and optional file) handler.

    Intended for scripts. Library modules should use logging.getLogger(__name__)
    and let setup_logging() configure the root logger.

    Example:
        logger = get_logger(__name__)
        logger.info("Agent added", extra={'context': {'agent_id': 'web-1:9100'}})
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    has_console_handler = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    has_file_handler = any(
        isinstance(h, logging.FileHandler) and h.baseFilename == log_file
        for h in logger.handlers
    ) if log_file else False

    if not has_console_handler:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(_build_formatter(use_json, None))
        logger.addHandler(console_handler)

    if log_file and not has_file_handler:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(_build_formatter(use_json, None))
        logger.addHandler(file_handler)

    return logger


def setup_logging(
    service: str,
    level='INFO',
    log_file: Optional[str] = None,
    use_json: bool = True
) -> logging.Logger:
    """
    Configure the root logger for a Sentinel process.

    Replaces any handlers already installed on the root logger, so calling it
    twice (e.g. from tests) does not duplicate output.

    Args:
        service: Service name stamped on every JSON record
        level: Level name ('INFO') or number (logging.INFO)
        log_file: Optional path for an additional file handler
        use_json: JSON lines when True, plain text otherwise

    Returns:
        The root logger
    """
    if isinstance(level, str):
        numeric_level = logging.getLevelName(level.upper())
        if not isinstance(numeric_level, int):
            raise ValueError(f"Unknown log level: {level}")
        level = numeric_level

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    root.setLevel(level)
    formatter = _build_formatter(use_json, service)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return root
