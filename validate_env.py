"""
Environment Variable Validation
Checks the variables a production deployment needs before the app starts
"""
import os
import sys
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

ENV = os.environ.get('ENV', 'production')

REQUIRED_VARS = {
    'production': [
        'SECRET_KEY',
        'UPLOADS_BASE_URL',
    ],
}

# Either DATABASE_URL or the full set of MySQL settings
DATABASE_VARS = ['DB_USER', 'DB_PASSWORD', 'DB_HOST', 'DB_NAME']

OPTIONAL_VARS = [
    'DB_PORT',
    'DB_POOL_SIZE',
    'DB_MAX_OVERFLOW',
    'DB_POOL_TIMEOUT',
    'DB_POOL_RECYCLE',
    'DB_CONNECT_TIMEOUT',
    'JWT_EXPIRES_DAYS',
    'ALLOWED_ORIGINS',
    'SESSION_COOKIE_SECURE',
    'SESSION_COOKIE_SAMESITE',
    'RATELIMIT_STORAGE_URI',
    'LOGIN_RATE_LIMIT',
    'UPLOAD_FOLDER',
    'FIREBASE_CREDENTIALS_FILE',
    'FIREBASE_PROJECT_ID',
    'FIREBASE_CLIENT_EMAIL',
    'FIREBASE_PRIVATE_KEY',
    'NOTIFICATIONS_ASYNC',
    'LOG_DIR',
    'SENTRY_DSN',
]


def validate_environment(env=ENV):
    """
    Validate required environment variables

    Returns:
        Tuple of (is_valid, missing_vars, warnings)
    """
    missing_vars = [var for var in REQUIRED_VARS.get(env, []) if not os.environ.get(var)]
    warnings = []

    if not os.environ.get('DATABASE_URL'):
        missing_db = [var for var in DATABASE_VARS if not os.environ.get(var)]
        if env == 'production':
            missing_vars.extend(missing_db)
        elif missing_db:
            warnings.append("No database configured - using local SQLite")

    firebase_inline = all(
        os.environ.get(var) for var in ('FIREBASE_PROJECT_ID', 'FIREBASE_CLIENT_EMAIL', 'FIREBASE_PRIVATE_KEY')
    )
    if not (os.environ.get('FIREBASE_CREDENTIALS_FILE') or firebase_inline):
        warnings.append("Firebase credentials not set - assignment push notifications are disabled")

    if not os.environ.get('ALLOWED_ORIGINS'):
        warnings.append("ALLOWED_ORIGINS not set - CORS only allows localhost")

    return len(missing_vars) == 0, missing_vars, warnings


def print_validation_results():
    """Print validation results to console"""
    is_valid, missing_vars, warnings = validate_environment()

    print(f"\n{'='*60}")
    print(f"Environment Variable Validation - {ENV.upper()}")
    print(f"{'='*60}\n")

    if is_valid:
        print("✓ All required environment variables are set\n")
    else:
        print("✗ Missing required environment variables:\n")
        for var in missing_vars:
            print(f"  - {var}")
        print("\nPlease set these variables in your .env file or environment")
        print("See .env.example for reference\n")

    if warnings:
        print("⚠ Warnings:\n")
        for warning in warnings:
            print(f"  - {warning}")
        print()

    print(f"{'='*60}\n")

    return is_valid


if __name__ == '__main__':
    is_valid = print_validation_results()
    if not is_valid:
        sys.exit(1)
