from .logger_utils import get_logger, setup_logging, PrefixedLogger
