import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Optional

from loguru import logger

from app.config.settings import settings
from app.utils.context import get_request_id

DEFAULT_REQUEST_ID = "app"

# Standard library loggers whose records should end up in loguru
INTERCEPTED_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "celery",
    "celery.beat",
)


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru, tagged with the current request id."""

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.bind(request_id=get_request_id() or DEFAULT_REQUEST_ID).opt(
            depth=depth, exception=record.exc_info
        ).log(level, record.getMessage())


class CustomizeLogger:
    @classmethod
    def make_logger(
        cls, config_path: Path, profile: str = "logger", level: Optional[str] = None
    ):
        """
        Configure loguru from one profile of a JSON logging config.

        Falls back to the "logger" profile when the requested one is missing.
        `level` overrides the profile's level when given.
        """
        with open(config_path) as config_file:
            config = json.load(config_file)
        options = config.get(profile) or config["logger"]

        log_dir = Path(options.get("log_dir", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"{date.today():%Y-%m-%d}-{options['filename']}"

        return cls.customize_logging(
            log_file=log_file,
            level=(level or options.get("level", "info")).upper(),
            rotation=options.get("rotation"),
            retention=options.get("retention"),
            console_format=options["console_format"],
            file_format=options["file_format"],
            serialize=options.get("use_json_logs", False)
            and options["file_format"] == "json",
        )

    @classmethod
    def customize_logging(
        cls,
        log_file: Path,
        level: str,
        rotation: str,
        retention: str,
        console_format: str,
        file_format: str,
        serialize: bool = False,
    ):
        logger.remove()
        logger.configure(extra={"request_id": DEFAULT_REQUEST_ID})

        logger.add(
            sys.stdout,
            enqueue=True,
            backtrace=True,
            level=level,
            format=console_format,
            colorize=True,
        )

        file_options = {"serialize": True} if serialize else {"format": file_format}
        logger.add(
            str(log_file),
            rotation=rotation,
            retention=retention,
            enqueue=True,
            backtrace=True,
            level=level,
            colorize=False,
            **file_options,
        )

        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
        for name in INTERCEPTED_LOGGERS:
            logging.getLogger(name).handlers = [InterceptHandler()]

        return logger


custom_logger = CustomizeLogger.make_logger(
    Path(__file__).resolve().parents[2] / "logging_config.json",
    profile="production" if settings.ENVIRONMENT == "production" else "logger",
    level=settings.LOG_LEVEL,
)


def get_logger():
    """Logger bound to the request id of the current context."""
    return custom_logger.bind(request_id=get_request_id() or DEFAULT_REQUEST_ID)
