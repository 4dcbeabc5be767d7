"""
Main entry point for the bridgesync application.
"""

import uvicorn
import logging
import os
from pathlib import Path

from bridgesync.config import load_config, get_env_config
from bridgesync.api.main import create_app


def configure_logging(log_level: str = "INFO"):
    """Configure logging with the specified level."""
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL
    }

    numeric_level = level_map.get(log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True  # Force reconfiguration even if logging was already configured
    )

    # Child loggers inherit from the package logger
    bridgesync_logger = logging.getLogger('bridgesync')
    bridgesync_logger.setLevel(numeric_level)
    bridgesync_logger.propagate = True

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Loggers created before this call may carry their own level
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        if logger_name.startswith('bridgesync'):
            child_logger = logging.getLogger(logger_name)
            child_logger.setLevel(numeric_level)
            child_logger.propagate = True


logger = logging.getLogger(__name__)


def main():
    """Main application entry point."""
    try:
        env_config = get_env_config()
        config_path = Path(env_config.get_config_path())

        if not config_path.exists():
            logger.error(f"Configuration file not found: {config_path}")
            logger.info(f"Please create a {config_path} file with your configuration")
            logger.info("You can also set BRIDGESYNC_CONFIG environment variable to specify a different config file")
            return

        logger.info(f"Loading configuration from {config_path}")
        config = load_config(str(config_path))

        configure_logging(config.logging.level)
        logger.info(f"Logging configured with level: {config.logging.level}")

        app = create_app(config)

        # Reconfigure logging after app creation to catch any new loggers
        configure_logging(config.logging.level)

        logger.info("Starting bridgesync server...")
        uvicorn_log_config = {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                },
            },
            "handlers": {
                "default": {
                    "formatter": "default",
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {
                "level": config.logging.level,
                "handlers": ["default"],
            },
        }

        uvicorn.run(
            app,
            host=os.getenv("BRIDGESYNC_HOST", "0.0.0.0"),
            port=int(os.getenv("BRIDGESYNC_PORT", "9005")),
            log_config=uvicorn_log_config
        )

    except Exception as e:
        logger.error(f"Failed to start application: {e}")
        raise


if __name__ == "__main__":
    main()
