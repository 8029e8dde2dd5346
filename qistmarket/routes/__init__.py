"""
Routes package - contains all Flask blueprints
"""
from .auth_routes import bp as auth_bp
from .user_routes import bp as users_bp
from .orders_routes import bp as orders_bp
from .verification_routes import bp as verification_bp
from . import health

__all__ = ['auth_bp', 'users_bp', 'orders_bp', 'verification_bp', 'health']
