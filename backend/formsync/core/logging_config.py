"""
Logging configuration built on loguru
"""
import sys
import os
import logging
from loguru import logger
from datetime import datetime
from formsync.core.config import get_settings


class InterceptHandler(logging.Handler):
    """
    Route standard library log records into loguru
    """

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller that issued the logging call
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(settings=None):
    """
    Configure logging for the collaboration server
    """
    settings = settings or get_settings()

    # Remove default logger
    logger.remove()

    # Console logging with appropriate level
    logger.add(
        sys.stdout,
        format=settings.log_format,
        level=settings.log_level,
        colorize=True if settings.environment == "development" else False,
        backtrace=True,
        diagnose=True if settings.environment == "development" else False
    )

    # File logging if specified
    if settings.log_file:
        logger.add(
            settings.log_file,
            format=settings.log_format,
            level=settings.log_level,
            rotation=settings.log_rotation,
            retention=settings.log_retention,
            compression="gz",
            backtrace=True,
            diagnose=False  # Don't include sensitive data in file logs
        )

    # Structured logging for production
    if settings.environment == "production":
        logger.add(
            sys.stdout,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name} | {message}",
            level=settings.log_level,
            serialize=True,
            backtrace=False,
            diagnose=False
        )

    # Add error-specific logging
    if settings.error_log_dir:
        error_log_path = os.path.join(
            settings.error_log_dir, f"errors_{datetime.now().strftime('%Y%m%d')}.log"
        )
        os.makedirs(settings.error_log_dir, exist_ok=True)

        logger.add(
            error_log_path,
            format=settings.log_format,
            level="ERROR",
            rotation="1 day",
            retention="30 days",
            compression="gz",
            backtrace=True,
            diagnose=False
        )

    # Collaboration modules and uvicorn log through the standard library
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "socketio", "engineio"):
        logging.getLogger(name).handlers = [InterceptHandler()]
        logging.getLogger(name).propagate = False

    logger.info(f"Logging configured for {settings.environment} environment")



class RequestLoggingMiddleware:
    """
    ASGI middleware logging each HTTP response with its latency
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = datetime.now()

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                status_code = message["status"]
                processing_time = (datetime.now() - start_time).total_seconds()

                if status_code >= 500:
                    log_level = "ERROR"
                elif status_code >= 400:
                    log_level = "WARNING"
                else:
                    log_level = "INFO"

                logger.bind(
                    method=scope["method"],
                    path=scope["path"],
                    status_code=status_code,
                    processing_time=processing_time,
                    client_ip=scope["client"][0] if scope.get("client") else "unknown",
                ).log(
                    log_level,
                    f"Response: {status_code} {scope['method']} {scope['path']} - {processing_time:.3f}s",
                )

            await send(message)

        await self.app(scope, receive, send_wrapper)
