"""
Logging Configuration
Provides rotating file loggers for the application, errors, API access and auth events
Includes optional Sentry integration for error tracking
"""
import logging
import logging.handlers
import os
import traceback
from datetime import datetime
from config import Config

# Optional Sentry integration for error tracking
SENTRY_DSN = os.environ.get('SENTRY_DSN')
SENTRY_ENABLED = False
if SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[
            FlaskIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
        ],
        traces_sample_rate=1.0 if Config.ENV == 'development' else 0.1,
        environment=Config.ENV,
        send_default_pii=False  # CNIC and phone numbers must never leave the server
    )
    SENTRY_ENABLED = True

# Create logs directory if it doesn't exist
LOG_DIR = os.environ.get(
    'LOG_DIR',
    os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'logs')
)
os.makedirs(LOG_DIR, exist_ok=True)

# Log file paths
APP_LOG_FILE = os.path.join(LOG_DIR, 'app.log')
ERROR_LOG_FILE = os.path.join(LOG_DIR, 'error.log')
ACCESS_LOG_FILE = os.path.join(LOG_DIR, 'access.log')
AUTH_LOG_FILE = os.path.join(LOG_DIR, 'auth.log')

# Log format
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Log level based on environment
LOG_LEVEL = logging.DEBUG if Config.ENV == 'development' else logging.INFO


def setup_logger(name, log_file, level=LOG_LEVEL, max_bytes=10*1024*1024, backup_count=30):
    """
    Set up a logger with file rotation

    Args:
        name: Logger name
        log_file: Path to log file
        level: Logging level
        max_bytes: Maximum size of log file before rotation (default 10MB)
        backup_count: Number of backup files to keep

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))

    # Console handler (for development)
    if Config.ENV == 'development':
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(console_handler)

    logger.addHandler(file_handler)

    return logger


# Application Logger (general application logs)
app_logger = setup_logger('qist.app', APP_LOG_FILE, LOG_LEVEL)

# Error Logger (errors and exceptions)
error_logger = setup_logger('qist.error', ERROR_LOG_FILE, logging.ERROR)

# Access Logger (API access logs)
access_logger = setup_logger('qist.access', ACCESS_LOG_FILE, logging.INFO)

# Authentication Logger (login attempts, auth events)
auth_logger = setup_logger('qist.auth', AUTH_LOG_FILE, logging.INFO)


def mask_identifier(identifier):
    """Show only the first 3 characters of a username, phone or CNIC"""
    identifier = str(identifier)
    if len(identifier) > 3:
        return identifier[:3] + '*' * (len(identifier) - 3)
    return '***'


def log_auth_event(event_type, success, identifier=None, user_id=None, role=None, ip_address=None, error=None):
    """
    Log authentication events

    Args:
        event_type: Type of event (login, logout, signup, token_rejected)
        success: Whether the operation was successful
        identifier: Username used
        user_id: User ID if known
        role: Role name if known
        ip_address: Client IP address
        error: Error message if failed
    """
    log_data = {
        'event_type': event_type,
        'success': success,
        'timestamp': datetime.now().isoformat(),
    }

    if identifier:
        log_data['identifier'] = mask_identifier(identifier)

    if user_id:
        log_data['user_id'] = user_id

    if role:
        log_data['role'] = role

    if ip_address:
        log_data['ip_address'] = ip_address

    if error:
        log_data['error'] = str(error)

    if success:
        auth_logger.info(f"Auth Event: {log_data}")
    else:
        auth_logger.warning(f"Auth Event Failed: {log_data}")


def log_error_with_context(error, context=None, level=logging.ERROR):
    """
    Log error with context information

    Args:
        error: Exception object or error message
        context: Additional context dictionary
        level: Logging level
    """
    log_data = {
        'error_type': type(error).__name__,
        'error_message': str(error),
        'timestamp': datetime.now().isoformat(),
    }

    if context:
        log_data['context'] = context

    if isinstance(error, BaseException) and error.__traceback__ is not None:
        log_data['traceback'] = ''.join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )

    error_logger.log(level, f"Error: {log_data}")

    if SENTRY_ENABLED and isinstance(error, Exception):
        import sentry_sdk
        with sentry_sdk.push_scope() as scope:
            if context:
                for key, value in context.items():
                    scope.set_context(key, value if isinstance(value, dict) else {'value': value})
            scope.set_tag("error_type", log_data['error_type'])
            sentry_sdk.capture_exception(error)


def log_info(message, context=None):
    """Log informational message"""
    if context:
        app_logger.info(f"{message} | Context: {context}")
    else:
        app_logger.info(message)

