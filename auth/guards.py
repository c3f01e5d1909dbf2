# auth/guards.py
"""
Route decorators and ownership checks.

Every guarded view runs behind flask-jwt-extended's jwt_required(); the
user_lookup_loader registered in app.py turns the token subject into the
account summary dict returned by get_current_user().
"""

from functools import wraps

from flask_jwt_extended import get_current_user, jwt_required

from services.access import role_of
from services.errors import ForbiddenError


def roles_required(*roles):
    """Require a valid token and, when roles are given, one of those roles."""
    def decorator(view):
        @wraps(view)
        @jwt_required()
        def wrapper(*args, **kwargs):
            if roles and role_of(get_current_user()) not in roles:
                raise ForbiddenError(f"Requires role: {', '.join(roles)}")
            return view(*args, **kwargs)
        return wrapper
    return decorator


login_required = roles_required()


def ensure(allowed: bool, message: str = "You do not have access to this resource"):
    if not allowed:
        raise ForbiddenError(message)
