"""
User Management Routes Blueprint
Administrator endpoints for staff accounts
"""
import math

from flask import Blueprint, request
from sqlalchemy import or_
from werkzeug.security import generate_password_hash

from qistmarket.auth import admin_required, require_auth
from qistmarket.error_handler import AuthorizationError, ConflictError, ValidationError
from qistmarket.helpers import get_json_body, get_page_args, success_response
from qistmarket.logger_config import app_logger
from qistmarket.models import (
    db, Order, User, Verification, ROLE_SUPER_ADMIN, ADMIN_ROLES, USER_STATUS_ACTIVE, USER_STATUS_INACTIVE,
)
from qistmarket.schemas import user_schema, users_schema
from qistmarket.services.orders import OrderLifecycleEngine
from qistmarket.services.users import commit_user_changes, ensure_unique_fields, get_role, get_user
from qistmarket.validation import UserUpdateSchema, validate_request_data

bp = Blueprint('users', __name__)


def _target_user(user_id):
    """Load the user being managed; administrators cannot act on themselves here"""
    if user_id == request.user_id:
        raise AuthorizationError("You cannot perform this action on your own account")
    user = get_user(db.session, user_id)
    if user.role_name == ROLE_SUPER_ADMIN and request.role != ROLE_SUPER_ADMIN:
        raise AuthorizationError("Only a Super Admin can manage another Super Admin")
    return user


@bp.route('/users', methods=['GET'])
@admin_required
def list_users():
    """
    GET /api/users
    Paginated staff list with search and role/status filters
    """
    page, limit = get_page_args()
    query = User.query

    search = request.args.get('search', '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            User.full_name.ilike(pattern),
            User.username.ilike(pattern),
            User.email.ilike(pattern),
            User.cnic.ilike(pattern),
            User.phone.ilike(pattern),
        ))
    if request.args.get('role_id'):
        query = query.filter(User.role_id == request.args.get('role_id', type=int))
    if request.args.get('status'):
        query = query.filter(User.status == request.args['status'])

    total = query.count()
    users = query.order_by(User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    total_pages = math.ceil(total / limit)
    return success_response({
        'users': users_schema.dump(users),
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'totalPages': total_pages,
            'hasNext': page < total_pages,
            'hasPrev': page > 1,
        },
    })


@bp.route('/users/verification-officers', methods=['GET'])
@require_auth
def list_verification_officers():
    """
    GET /api/users/verification-officers
    Active officers with the number of open orders assigned to each
    """
    engine = OrderLifecycleEngine(db.session)
    officers = engine.active_officers()
    workload = engine.open_assignment_counts([officer.id for officer in officers])
    return success_response({
        'officers': [
            {
                'id': officer.id,
                'full_name': officer.full_name,
                'username': officer.username,
                'phone': officer.phone,
                'open_assignments': workload[officer.id],
            }
            for officer in officers
        ]
    })


@bp.route('/users/<int:user_id>', methods=['PUT'])
@admin_required
def update_user(user_id):
    user = _target_user(user_id)

    data, errors = validate_request_data(UserUpdateSchema, get_json_body())
    if errors:
        raise ValidationError("Validation failed", details=errors)

    for field in ('email', 'cnic', 'phone'):
        if field in data:
            data[field] = data[field] or None
    ensure_unique_fields(db.session, data, exclude_user_id=user.id)

    if 'role_id' in data:
        role = get_role(db.session, data.pop('role_id'))
        if role.name in ADMIN_ROLES and request.role != ROLE_SUPER_ADMIN:
            raise AuthorizationError("Only a Super Admin can grant administrator roles")
        user.role_id = role.id
    if 'password' in data:
        user.password_hash = generate_password_hash(data.pop('password'))
        # Force the officer to sign in again on the device
        user.device_id = None

    for field, value in data.items():
        setattr(user, field, value)
    commit_user_changes(db.session)

    app_logger.info(f"User {user.id} updated by admin {request.user_id}")
    return success_response({'user': user_schema.dump(user)}, message="User updated successfully")


@bp.route('/users/<int:user_id>', methods=['DELETE'])
@admin_required
def delete_user(user_id):
    user = _target_user(user_id)

    owns_orders = Order.query.filter(or_(
        Order.created_by_user_id == user.id,
        Order.assigned_to_user_id == user.id,
    )).first()
    owns_verifications = Verification.query.filter(or_(
        Verification.verification_officer_id == user.id,
        Verification.approved_by == user.id,
    )).first()
    if owns_orders or owns_verifications:
        raise ConflictError("User still owns orders or verifications; disable the account instead")

    db.session.delete(user)
    db.session.commit()

    app_logger.info(f"User {user_id} deleted by admin {request.user_id}")
    return success_response(message="User deleted successfully")


@bp.route('/users/<int:user_id>/status', methods=['PATCH'])
@admin_required
def toggle_user_status(user_id):
    """
    PATCH /api/users/<id>/status
    Set {"status": "active"|"inactive"}, or flip the current status when omitted
    """
    user = _target_user(user_id)

    status = get_json_body().get('status')
    if status is None:
        status = USER_STATUS_INACTIVE if user.is_active else USER_STATUS_ACTIVE
    if status not in (USER_STATUS_ACTIVE, USER_STATUS_INACTIVE):
        raise ValidationError("status must be 'active' or 'inactive'")

    user.status = status
    if status == USER_STATUS_INACTIVE:
        user.device_id = None
    db.session.commit()

    app_logger.info(f"User {user.id} set to {status} by admin {request.user_id}")
    return success_response({'user': user_schema.dump(user)}, message=f"User {status}")


@bp.route('/users/<int:user_id>/permissions', methods=['PATCH'])
@admin_required
def update_user_permissions(user_id):
    """
    PATCH /api/users/<id>/permissions
    Replace the per-user overrides merged over the role's permissions
    """
    user = _target_user(user_id)

    permissions = get_json_body().get('permissions')
    if not isinstance(permissions, dict) or not all(isinstance(key, str) for key in permissions):
        raise ValidationError("permissions must be an object")

    user.permissions = permissions
    db.session.commit()

    return success_response({'user': user_schema.dump(user)}, message="Permissions updated successfully")
