"""
Staff account helpers shared by the auth and user management routes
"""
import re

from sqlalchemy.exc import IntegrityError

from qistmarket.error_handler import ConflictError, NotFoundError
from qistmarket.models import Role, User

UNIQUE_USER_FIELDS = ('username', 'email', 'cnic', 'phone')

# sqlite "users.email", MySQL "key 'users.email'" or "key 'email'", PostgreSQL "Key (email)"
UNIQUE_VIOLATION_FIELD = re.compile(r"(?:users\.|key '|key \()(" + "|".join(UNIQUE_USER_FIELDS) + r")\b", re.IGNORECASE)


def ensure_unique_fields(session, values, exclude_user_id=None):
    """Raise ConflictError naming the first identifier already taken by another user"""
    for field in UNIQUE_USER_FIELDS:
        value = values.get(field)
        if not value:
            continue
        query = session.query(User.id).filter(getattr(User, field) == value)
        if exclude_user_id is not None:
            query = query.filter(User.id != exclude_user_id)
        if query.first():
            raise ConflictError(f"{field} already exists")


def get_role(session, role_id):
    role = session.get(Role, role_id)
    if role is None:
        raise NotFoundError("Invalid role ID")
    return role


def get_user(session, user_id):
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def conflicting_field(message):
    """Column named by a unique-constraint violation message, or None"""
    match = UNIQUE_VIOLATION_FIELD.search(message)
    return match.group(1).lower() if match else None


def commit_user_changes(session):
    """Commit, turning a lost uniqueness race into the same 409 as the pre-check"""
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        field = conflicting_field(str(e.orig))
        raise ConflictError(f"{field} already exists" if field else "This record already exists")
