import os
from datetime import timedelta
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    # Environment Configuration
    ENV = os.environ.get('ENV', 'production')
    DEBUG = ENV == 'development'
    TESTING = False

    # Secret key for JWT signing
    SECRET_KEY = os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        if ENV == 'production':
            raise ValueError("SECRET_KEY environment variable is required")
        SECRET_KEY = 'dev-secret-key'

    # JWT lifetime (app tokens are long-lived on the officer's device)
    JWT_ALGORITHM = 'HS256'
    JWT_EXPIRES_DAYS = int(os.environ.get('JWT_EXPIRES_DAYS', 30))

    # Database Credentials
    MYSQL_USER = os.environ.get('DB_USER')
    MYSQL_PASSWORD = os.environ.get('DB_PASSWORD')
    MYSQL_HOST = os.environ.get('DB_HOST')
    MYSQL_PORT = int(os.environ.get('DB_PORT', 3306))
    MYSQL_DB = os.environ.get('DB_NAME')

    # DATABASE_URL wins over the individual MySQL settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    if not SQLALCHEMY_DATABASE_URI:
        if MYSQL_USER and MYSQL_PASSWORD and MYSQL_HOST and MYSQL_DB:
            SQLALCHEMY_DATABASE_URI = (
                f"mysql+pymysql://{MYSQL_USER}:{MYSQL_PASSWORD}@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}"
            )
        elif ENV == 'production':
            raise ValueError("DATABASE_URL or DB_USER, DB_PASSWORD, DB_HOST and DB_NAME are required")
        else:
            SQLALCHEMY_DATABASE_URI = 'sqlite:///qistmarket.db'

    # Disable modification tracking to save resources
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Database Connection Pooling Configuration
    DB_POOL_SIZE = int(os.environ.get('DB_POOL_SIZE', 10))
    DB_MAX_OVERFLOW = int(os.environ.get('DB_MAX_OVERFLOW', 20))
    DB_POOL_TIMEOUT = int(os.environ.get('DB_POOL_TIMEOUT', 30))
    DB_POOL_RECYCLE = int(os.environ.get('DB_POOL_RECYCLE', 280))
    DB_CONNECT_TIMEOUT = int(os.environ.get('DB_CONNECT_TIMEOUT', 10))

    if SQLALCHEMY_DATABASE_URI.startswith('mysql'):
        SQLALCHEMY_ENGINE_OPTIONS = {
            'pool_pre_ping': True,
            'pool_recycle': DB_POOL_RECYCLE,
            'pool_size': DB_POOL_SIZE,
            'max_overflow': DB_MAX_OVERFLOW,
            'pool_timeout': DB_POOL_TIMEOUT,
            'isolation_level': 'READ COMMITTED',
            'connect_args': {
                'connect_timeout': DB_CONNECT_TIMEOUT,
                'read_timeout': 30,
                'write_timeout': 30,
                'charset': 'utf8mb4',
                'autocommit': False,  # Use transactions
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}

    # Cookie used by the web dashboard (the mobile app sends a Bearer header)
    SESSION_COOKIE_SECURE = os.environ.get('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_SAMESITE = os.environ.get('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = timedelta(days=JWT_EXPIRES_DAYS)

    # CORS Configuration
    ALLOWED_ORIGINS = os.environ.get(
        'ALLOWED_ORIGINS',
        'http://localhost:5000,http://localhost:3000'
    ).split(',')

    # Rate limiting (flask-limiter)
    RATELIMIT_ENABLED = os.environ.get('RATELIMIT_ENABLED', 'true').lower() == 'true'
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')
    LOGIN_RATE_LIMIT = os.environ.get('LOGIN_RATE_LIMIT', '10 per minute')

    # File Upload Configuration
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB max request size
    UPLOAD_FOLDER = os.environ.get(
        'UPLOAD_FOLDER',
        os.path.join(os.path.dirname(os.path.abspath(__file__)), 'uploads')
    )
    UPLOADS_BASE_URL = os.environ.get('UPLOADS_BASE_URL', 'http://localhost:5000/uploads').rstrip('/')

    # Push notifications (Firebase Admin SDK service account)
    FIREBASE_CREDENTIALS_FILE = os.environ.get('FIREBASE_CREDENTIALS_FILE')
    FIREBASE_PROJECT_ID = os.environ.get('FIREBASE_PROJECT_ID')
    FIREBASE_CLIENT_EMAIL = os.environ.get('FIREBASE_CLIENT_EMAIL')
    FIREBASE_PRIVATE_KEY = os.environ.get('FIREBASE_PRIVATE_KEY')
    NOTIFICATIONS_ASYNC = os.environ.get('NOTIFICATIONS_ASYNC', 'true').lower() == 'true'

    # Pagination
    DEFAULT_PAGE_SIZE = int(os.environ.get('DEFAULT_PAGE_SIZE', 10))
    MAX_PAGE_SIZE = int(os.environ.get('MAX_PAGE_SIZE', 100))

    # Production Security Settings
    if ENV == 'production':
        PREFERRED_URL_SCHEME = 'https'
