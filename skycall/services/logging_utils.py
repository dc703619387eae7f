# services/logging_utils.py
import logging
import logging.config
import re
from pathlib import Path

from skycall.constants import LOG_DIR, LOG_LEVEL


class RedactingFilter(logging.Filter):
    """
    A logging.Filter that masks credentials and negotiation payloads in the message.
    """

    SENSITIVE_PATTERNS = [
        re.compile(r'(token=)\S+'),
        re.compile(r'(jwt=)\S+'),
        re.compile(r'(aes_key=)\S+'),
        re.compile(r'(sdp=)\S+'),
        re.compile(r'(candidate=)\S+'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Called for every LogRecord. The formatted message replaces record.msg
        so that any "token=xxx" reaches the handlers as "token=***".
        """
        msg = record.getMessage()
        for pat in self.SENSITIVE_PATTERNS:
            msg = pat.sub(r"\1***", msg)

        record.msg = msg
        record.args = ()
        return True


def setup_logging(
        level: str = None,
        logs_dir: str = None,
        log_file: str = "skycall.log") -> None:
    """
    Configure application-wide logging with console and rotating file handlers.

    Args:
        level (str, optional): Logging level (e.g., "INFO", "DEBUG").
            Defaults to the LOG_LEVEL setting.
        logs_dir (str, optional): Directory for log files, created if missing.
            Defaults to the LOG_DIR setting.
        log_file (str, optional): Filename for the main log file within logs_dir.

    Returns:
        None

    Raises:
        OSError: If the logs_dir directory cannot be created.
    """
    level = (level or LOG_LEVEL).upper()
    logs_dir = logs_dir or LOG_DIR

    Path(logs_dir).mkdir(parents=True, exist_ok=True)

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,          # keep websockets' own logs
        "filters": {
            "redact": {
                "()": RedactingFilter,
            },
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
                "datefmt": "%d-%m-%Y %H:%M:%S",
            },
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler",
                        "formatter": "default",
                        "filters": ["redact"],
                        "level": level},
            "file":    {"class": "logging.handlers.TimedRotatingFileHandler",
                        "formatter": "default",
                        "filters": ["redact"],
                        "filename": f"{logs_dir}/{log_file}",
                        "when": "midnight",
                        "backupCount": 14,
                        "encoding": "utf-8",
                        "level": level},
            "errors":  {"class": "logging.handlers.RotatingFileHandler",
                        "formatter": "default",
                        "filters": ["redact"],
                        "filename": f"{logs_dir}/skycall-error.log",
                        "maxBytes": 10 * 1024 * 1024,    # 10 MiB
                        "backupCount": 5,
                        "encoding": "utf-8",
                        "level": "ERROR"},
        },
        "loggers": {
            # Per-frame connection chatter from the websockets library
            "websockets": {"level": "WARNING"},
        },
        "root": {"level": level,
                 "handlers": ["console", "file", "errors"]},
    }

    logging.config.dictConfig(logging_config)
