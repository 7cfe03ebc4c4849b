#!/usr/bin/env python3
"""
Logging configuration for RCBOT
Sets up console and rotating file logs for booking runs and mail retrieval
"""

import os
import logging
import logging.handlers
import shutil
from datetime import datetime
from typing import Optional

# Read production mode setting
PRODUCTION_MODE = os.getenv('PRODUCTION_MODE', 'true').lower() == 'true'

# Fixed 'latest_log' directory, overridable for tests and deployments
LOG_DIR = os.getenv(
    'RCBOT_LOG_DIR',
    os.path.join(os.path.dirname(os.path.abspath(__file__)), 'logs', 'latest_log'),
)

# Loggers that also write to the dedicated automation run log
RUN_LOGGERS = (
    'OrchestrationEngine',
    'VerificationHandler',
    'ParallelRunCoordinator',
    'StatusStore',
    'MailClient',
    'VerificationCodePool',
)


def _clear_log_dir(log_dir: str) -> None:
    if not os.path.exists(log_dir):
        return
    for filename in os.listdir(log_dir):
        file_path = os.path.join(log_dir, filename)
        try:
            if os.path.isfile(file_path) or os.path.islink(file_path):
                os.unlink(file_path)
            elif os.path.isdir(file_path):
                shutil.rmtree(file_path)
        except OSError as e:
            print(f'Failed to delete {file_path}. Reason: {e}')


def setup_logging(
    *,
    production_mode: Optional[bool] = None,
    log_dir: Optional[str] = None,
    clear_previous: bool = True,
) -> str:
    """
    Set up console and rotating file handlers on the root logger.

    Previous logs in the target directory are removed before the new session
    starts. Returns the directory the log files are written to.
    """
    production = PRODUCTION_MODE if production_mode is None else production_mode
    target_dir = log_dir or LOG_DIR

    if clear_previous:
        _clear_log_dir(target_dir)
    os.makedirs(target_dir, exist_ok=True)

    main_log_file = os.path.join(target_dir, 'rcbot.log')
    debug_log_file = os.path.join(target_dir, 'rcbot_debug.log')
    error_log_file = os.path.join(target_dir, 'rcbot_errors.log')
    run_log_file = os.path.join(target_dir, 'automation_runs.log')

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.WARNING if production else logging.DEBUG)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    # Detailed formatter with file, line, and function information
    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d in %(funcName)s()] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console formatter (less detailed for readability)
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING if production else logging.INFO)
    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    main_file_handler = logging.handlers.RotatingFileHandler(
        main_log_file,
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )
    main_file_handler.setLevel(logging.WARNING if production else logging.INFO)
    main_file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(main_file_handler)

    # Debug log file handler - only enabled in development mode
    if not production:
        debug_file_handler = logging.handlers.RotatingFileHandler(
            debug_log_file,
            maxBytes=50*1024*1024,  # 50MB
            backupCount=3,
            encoding='utf-8'
        )
        debug_file_handler.setLevel(logging.DEBUG)
        debug_file_handler.setFormatter(detailed_formatter)
        root_logger.addHandler(debug_file_handler)

    error_file_handler = logging.handlers.RotatingFileHandler(
        error_log_file,
        maxBytes=5*1024*1024,  # 5MB
        backupCount=5,
        encoding='utf-8'
    )
    error_file_handler.setLevel(logging.ERROR)
    error_file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(error_file_handler)

    # Dedicated run log shared by the engine, coordinator, store and mail client
    run_handler = logging.handlers.RotatingFileHandler(
        run_log_file,
        maxBytes=20*1024*1024,  # 20MB
        backupCount=5,
        encoding='utf-8'
    )
    run_handler.setLevel(logging.INFO if production else logging.DEBUG)
    run_handler.setFormatter(detailed_formatter)

    for name in RUN_LOGGERS:
        component_logger = logging.getLogger(name)
        for handler in list(component_logger.handlers):
            component_logger.removeHandler(handler)
            handler.close()
        component_logger.addHandler(run_handler)
        component_logger.setLevel(logging.INFO if production else logging.DEBUG)

    # Reduce noise from external libraries
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('playwright').setLevel(logging.WARNING)

    root_logger.info("="*80)
    root_logger.info(f"RCBOT Logging Initialized - {datetime.now()}")
    root_logger.info(f"Production Mode: {'ON' if production else 'OFF'}")
    root_logger.info(f"Log Level: {'WARNING+' if production else 'DEBUG+'}")
    root_logger.info(f"Main log: {main_log_file}")
    if not production:
        root_logger.info(f"Debug log: {debug_log_file}")
    root_logger.info(f"Error log: {error_log_file}")
    root_logger.info(f"Automation run log: {run_log_file}")
    root_logger.info("="*80)
    return target_dir


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name

    Args:
        name: Logger name (usually the component class name)

    Returns:
        logging.Logger instance
    """
    return logging.getLogger(name)
