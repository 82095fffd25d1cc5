"""
logging_config.py — Centralized Logging Configuration for the Order Lifecycle Service

This module configures unified logging behavior for the API, the workflow layer
and the collaborator clients. The lifecycle core itself never logs.

Features:
    • Combined console and file logging output
    • Process ID tagging for multi-process visibility
    • Log level and file name taken from the environment (LOG_LEVEL, LOG_FILE)
    • Reduced verbosity for external dependencies (pika, httpx)
"""

import logging
import os
import sys

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("LOG_FILE", "order_lifecycle.log")


def setup_logging(level: str = LOG_LEVEL, log_file: str = LOG_FILE):
    """
    Configures the global logging system for the application.

    Args:
        level (str): Root log level name, e.g. "INFO" or "DEBUG".
        log_file (str): Path of the persistent log file. An empty value
            disables file output.

    The configuration includes:
        - Log format: timestamp, log level, process ID, and message
        - Output destinations: the log file (if any) and stdout
        - Reduced verbosity for pika and httpx
    """
    log_format = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(message)s'

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        handlers=handlers
    )

    logging.getLogger("pika").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a logger for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A logger that follows the global format and handlers.
    """
    return logging.getLogger(name)
