"""
Authentication and Authorization Utilities
Provides JWT token generation, verification, and decorators for route protection
"""
import jwt
from functools import wraps
from flask import request, current_app
from datetime import datetime, timedelta, timezone

from qistmarket.models import db, User, ADMIN_ROLES
from qistmarket.logger_config import app_logger, log_auth_event
from qistmarket.error_handler import AuthenticationError, AuthorizationError

PARTITION_WEB = 'web'
PARTITION_APP = 'app'


def generate_token(user, partition, device_id=None):
    """
    Generate a JWT token for an authenticated user

    The role is deliberately absent: it is re-read from the database on
    every request so role changes apply immediately.

    Args:
        user: User instance
        partition: 'web' (dashboard) or 'app' (officer mobile app)
        device_id: Bound device for app tokens

    Returns:
        str: JWT token
    """
    now = datetime.now(timezone.utc)
    payload = {
        'user_id': user.id,
        'username': user.username,
        'partition': partition,
        'exp': now + timedelta(days=current_app.config.get('JWT_EXPIRES_DAYS', 30)),
        'iat': now,
    }
    if device_id:
        payload['device_id'] = device_id

    secret_key = current_app.config.get('SECRET_KEY')
    if not secret_key:
        raise ValueError("SECRET_KEY not configured")

    return jwt.encode(payload, secret_key, algorithm=current_app.config.get('JWT_ALGORITHM', 'HS256'))


def verify_token(token):
    """
    Verify and decode a JWT token

    Returns:
        dict: Decoded token payload or None if invalid
    """
    secret_key = current_app.config.get('SECRET_KEY')
    try:
        return jwt.decode(
            token,
            secret_key,
            algorithms=[current_app.config.get('JWT_ALGORITHM', 'HS256')],
            leeway=10,
        )
    except jwt.ExpiredSignatureError as e:
        app_logger.warning(f"JWT token expired: {e}")
        return None
    except jwt.InvalidTokenError as e:
        app_logger.warning(f"JWT token invalid - {type(e).__name__}: {e}")
        return None


def get_token_from_request():
    """
    Extract JWT token from request

    Priority:
    1. Authorization header (Bearer token), used by the mobile app
    2. HttpOnly cookie (access_token), set by the web login

    Returns:
        str: Token or None
    """
    auth_header = request.headers.get('Authorization')
    if auth_header and auth_header.startswith('Bearer '):
        token = auth_header.split(' ', 1)[1].strip()
        if token:
            return token

    return request.cookies.get('access_token')


def authenticate_request():
    """
    Resolve the caller of the current request

    Raises:
        AuthenticationError: missing/invalid token, deleted user or stale device
        AuthorizationError: disabled account

    Returns:
        User: freshly loaded user
    """
    token = get_token_from_request()
    if not token:
        raise AuthenticationError("Authentication required")

    payload = verify_token(token)
    if not payload:
        raise AuthenticationError("Invalid or expired token")

    user = db.session.get(User, payload.get('user_id'))
    if user is None:
        app_logger.warning(f"Auth failed - User {payload.get('user_id')} not found (Route: {request.path})")
        raise AuthenticationError("User no longer exists")

    if not user.is_active:
        raise AuthorizationError("Account is disabled")

    # A newer app login on another device invalidates this token
    if payload.get('partition') == PARTITION_APP and payload.get('device_id') != user.device_id:
        log_auth_event('token_rejected', False, identifier=user.username, user_id=user.id,
                       ip_address=request.remote_addr, error='device mismatch')
        raise AuthenticationError("Session is no longer valid on this device")

    request.current_user = user
    request.user_id = user.id
    request.role = user.role_name
    return user


def require_auth(f):
    """
    Decorator to require authentication for a route
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        authenticate_request()
        return f(*args, **kwargs)

    return decorated_function


def require_role(*allowed_roles):
    """
    Decorator to require specific role(s) for a route

    Args:
        *allowed_roles: One or more role names
    """
    def decorator(f):
        @wraps(f)
        @require_auth
        def decorated_function(*args, **kwargs):
            if request.role not in allowed_roles:
                app_logger.warning(
                    f"require_role: Insufficient permissions - Route: {request.path}, "
                    f"User ID: {request.user_id}, Role: '{request.role}', Required: {allowed_roles}"
                )
                raise AuthorizationError("Insufficient permissions")
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def admin_required(f):
    """Decorator to require an administrator role"""
    return require_role(*ADMIN_ROLES)(f)
