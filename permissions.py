# permissions.py
"""
Role checks for the API.

- role_required([...]): main decorator for views (root always passes).
- require_role(*roles): same thing with positional roles.

Roles:
- user: reads, creating and editing maintenance cases
- admin: everything a user can do + spare part create/edit/restock, case delete
- root: full access, including spare part deletion
"""

from functools import wraps
from typing import Iterable, Set

from flask import abort
from flask_login import current_user, login_required


def role_required(allowed_roles: Iterable[str]):
    """
    Restrict a view to the given roles.
    Example:
        @role_required(["admin", "root"])
        def view(): ...

    - Anonymous → handled by login_required (401/redirect to login).
    - root always passes.
    - Any other role outside ``allowed_roles`` → 403.
    """
    if isinstance(allowed_roles, str):
        allowed: Set[str] = {allowed_roles}
    else:
        allowed = set(allowed_roles or [])

    def decorator(view_func):
        @wraps(view_func)
        @login_required
        def wrapped(*args, **kwargs):
            role = getattr(current_user, "role", None)
            if role == "root" or role in allowed:
                return view_func(*args, **kwargs)
            abort(403)

        return wrapped
    return decorator


def require_role(*roles: str):
    """
    Positional form of role_required.
    Example:
        @require_role("admin", "root")
    """
    return role_required(list(roles))


def current_username() -> str | None:
    """Name recorded as ``created_by`` on new cases."""
    if not getattr(current_user, "is_authenticated", False):
        return None
    return getattr(current_user, "username", None)
