import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '0.1.0'


def configure_logging(cfg):
    """Configure application logging"""

    # Create logs directory if it doesn't exist
    log_dir = cfg.LOG_DIR
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if getattr(cfg, 'DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'pbackup.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure package logger
    package_logger = logging.getLogger('pbackup')
    package_logger.setLevel(log_level)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.addHandler(console_handler)
    package_logger.addHandler(file_handler)

    package_logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")
    return package_logger


def create_context(config_name=None):
    """
    Context factory.

    Loads the named configuration, configures logging, ensures working
    directories exist and builds a BackupContext.
    """
    from pbackup.config import config
    from pbackup.registry import build_context

    if config_name is None:
        config_name = os.environ.get('PBACKUP_ENV', 'production')

    cfg = config[config_name]

    configure_logging(cfg)

    # Ensure required directories exist
    os.makedirs(cfg.TEMP_DIR, exist_ok=True)

    context = build_context(cfg)
    logging.getLogger('pbackup').info(
        f"Context created ({config_name}): {len(context.locations)} location(s), "
        f"storage {context.storage.display_name}"
    )
    return context
