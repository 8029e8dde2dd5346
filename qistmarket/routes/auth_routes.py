"""
Authentication Routes Blueprint
Staff signup, web/app login, logout and own-profile endpoints
"""
from flask import Blueprint, current_app, request
from werkzeug.security import check_password_hash, generate_password_hash

from qistmarket import limiter
from qistmarket.auth import (
    PARTITION_APP, PARTITION_WEB, admin_required, generate_token, require_auth,
)
from qistmarket.error_handler import AuthenticationError, AuthorizationError, ValidationError
from qistmarket.helpers import get_json_body, success_response
from qistmarket.logger_config import log_auth_event
from qistmarket.models import db, Role, User, ADMIN_ROLES, ROLE_SUPER_ADMIN
from qistmarket.schemas import roles_schema, user_schema
from qistmarket.services.users import commit_user_changes, ensure_unique_fields, get_role
from qistmarket.validation import LoginSchema, ProfileUpdateSchema, SignupSchema, validate_request_data

bp = Blueprint('auth', __name__)


def login_rate_limit():
    return current_app.config.get('LOGIN_RATE_LIMIT', '10 per minute')


@bp.route('/signup', methods=['POST'])
@limiter.limit(login_rate_limit)
@admin_required
def signup():
    """
    POST /api/signup
    Create a staff account (administrators only)
    """
    data, errors = validate_request_data(SignupSchema, get_json_body())
    if errors:
        raise ValidationError("Missing required fields", details=errors)

    role = get_role(db.session, data['role_id'])
    # Only head office may mint other administrators
    if role.name in ADMIN_ROLES and request.role != ROLE_SUPER_ADMIN:
        raise AuthorizationError("Only a Super Admin can create administrator accounts")

    values = {
        'username': data['username'],
        'email': data.get('email') or None,
        'cnic': data.get('cnic') or None,
        'phone': data.get('phone') or None,
    }
    ensure_unique_fields(db.session, values)

    user = User(
        full_name=data['full_name'],
        password_hash=generate_password_hash(data['password']),
        role_id=role.id,
        **values,
    )
    db.session.add(user)
    commit_user_changes(db.session)

    log_auth_event('signup', True, identifier=user.username, user_id=user.id, role=role.name,
                   ip_address=request.remote_addr)
    return success_response(
        {'user': {'id': user.id, 'username': user.username, 'role': role.name}},
        message="User created successfully",
        status=201,
    )


def _login(partition):
    data, errors = validate_request_data(LoginSchema, get_json_body())
    if errors:
        raise ValidationError("Missing username or password", details=errors)

    username = data['username']
    user = User.query.filter_by(username=username).first()
    if user is None or not check_password_hash(user.password_hash, data['password']):
        log_auth_event('login', False, identifier=username, ip_address=request.remote_addr,
                       error='invalid credentials')
        raise AuthenticationError("Invalid credentials")

    if not user.is_active:
        log_auth_event('login', False, identifier=username, user_id=user.id, ip_address=request.remote_addr,
                       error='account disabled')
        raise AuthorizationError("Account is disabled")

    device_id = None
    if partition == PARTITION_WEB:
        if user.is_verification_officer:
            raise AuthorizationError("Verification officers must sign in through the mobile app")
    else:
        if not user.is_verification_officer:
            raise AuthorizationError("Only verification officers can sign in to the mobile app")
        device_id = data.get('device_id')
        if not device_id:
            raise ValidationError("device_id is required")
        # Binding a new device logs out every other device
        user.device_id = device_id
        if data.get('fcm_token'):
            user.fcm_token = data['fcm_token']
        db.session.commit()

    token = generate_token(user, partition, device_id=device_id)
    log_auth_event('login', True, identifier=username, user_id=user.id, role=user.role_name,
                   ip_address=request.remote_addr)

    response, status = success_response({'token': token, 'user': user_schema.dump(user)},
                                        message="Login successful")
    if partition == PARTITION_WEB:
        response.set_cookie(
            'access_token',
            token,
            max_age=current_app.config['JWT_EXPIRES_DAYS'] * 24 * 3600,
            httponly=True,
            secure=current_app.config.get('SESSION_COOKIE_SECURE', False),
            samesite=current_app.config.get('SESSION_COOKIE_SAMESITE', 'Lax'),
        )
    return response, status


@bp.route('/login/web', methods=['POST'])
@limiter.limit(login_rate_limit)
def login_web():
    """
    POST /api/login/web
    Dashboard login for administrators and sales staff; sets the access_token cookie
    """
    return _login(PARTITION_WEB)


@bp.route('/login/app', methods=['POST'])
@limiter.limit(login_rate_limit)
def login_app():
    """
    POST /api/login/app
    Mobile login for verification officers; binds the device
    """
    return _login(PARTITION_APP)


@bp.route('/logout', methods=['POST'])
@require_auth
def logout():
    user = request.current_user
    user.device_id = None
    db.session.commit()

    log_auth_event('logout', True, identifier=user.username, user_id=user.id, ip_address=request.remote_addr)
    response, status = success_response(message="Logged out successfully")
    response.delete_cookie('access_token')
    return response, status


@bp.route('/profile', methods=['GET'])
@require_auth
def get_profile():
    return success_response({'user': user_schema.dump(request.current_user)})


@bp.route('/profile', methods=['PUT'])
@require_auth
def update_profile():
    """
    PUT /api/profile
    Update the caller's own profile
    """
    data, errors = validate_request_data(ProfileUpdateSchema, get_json_body())
    if errors:
        raise ValidationError("Validation failed", details=errors)

    user = request.current_user
    for field in ('email', 'phone'):
        if field in data:
            data[field] = data[field] or None
    ensure_unique_fields(db.session, data, exclude_user_id=user.id)

    for field, value in data.items():
        setattr(user, field, value)
    commit_user_changes(db.session)

    return success_response({'user': user_schema.dump(user)}, message="Profile updated successfully")


@bp.route('/roles', methods=['GET'])
@require_auth
def get_roles():
    roles = Role.query.order_by(Role.id).all()
    return success_response({'roles': roles_schema.dump(roles)})
