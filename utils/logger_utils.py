import sys
from loguru import logger
from config import DEFAULT_LOGS_FILE, LOGS_SIZE, SOFT_NAME


class PrefixedLogger:
    """Wrapper around loguru logger that adds a prefix to all messages"""

    def __init__(self, prefix: str, width: int = 12):
        self.prefix = f"{prefix}"
        self.prefix = self.prefix.ljust(width if width > len(self.prefix) else len(self.prefix)) + " |"

    def _format_message(self, message: str) -> str:
        return f"{self.prefix} {message}"

    def _log(self, level: str, message: str, *args, **kwargs):
        # depth=2 so records point at the caller, not at this wrapper
        logger.opt(depth=2).log(level, self._format_message(message), *args, **kwargs)

    def debug(self, message: str, *args, **kwargs):
        self._log("DEBUG", message, *args, **kwargs)

    def info(self, message: str, *args, **kwargs):
        self._log("INFO", message, *args, **kwargs)

    def success(self, message: str, *args, **kwargs):
        self._log("SUCCESS", message, *args, **kwargs)

    def warning(self, message: str, *args, **kwargs):
        self._log("WARNING", message, *args, **kwargs)

    def error(self, message: str, *args, **kwargs):
        self._log("ERROR", message, *args, **kwargs)

    def exception(self, message: str, *args, **kwargs):
        logger.opt(depth=1, exception=True).error(self._format_message(message), *args, **kwargs)

    def critical(self, message: str, *args, **kwargs):
        self._log("CRITICAL", message, *args, **kwargs)


def get_logger(prefix: str, width: int = 12) -> PrefixedLogger:
    """Get a logger with automatic prefix for all messages

    Args:
        prefix: The prefix text to display
        width: Fixed width for padding (default: 12)
    """
    return PrefixedLogger(prefix, width)


def setup_logging(logs_file: str = DEFAULT_LOGS_FILE, rotation: str = LOGS_SIZE):
    """Replace loguru's default sink with the console format and a rotating file."""
    logger.remove()
    logger.add(
        sys.stdout,
        format=f"<green>{{time:HH:mm:ss}}</green> | [{SOFT_NAME}] | <level>{{level: <8}}</level> | <level>{{message}}</level>",
        colorize=True
    )
    if logs_file:
        logger.add(logs_file, rotation=rotation)
