# ui_routes.py - app shell: dashboard counters, login/logout, the user loader
from flask import Blueprint, current_app, jsonify, request
from flask_login import UserMixin, login_required, login_user, logout_user
from werkzeug.security import check_password_hash

from extensions import db, login_manager
from models import User
from modules.cases.lifecycle import get_controller
from modules.spare_parts.catalog import get_catalog
from modules.technicians.roster import get_roster

ui = Blueprint("ui", __name__)


@login_manager.user_loader
def load_user(user_id: str | None) -> User | UserMixin | None:
    """Resolve a ``User`` instance for Flask-Login sessions."""

    if not user_id:
        return None

    user = db.session.get(User, int(user_id))
    if user is not None:
        return user

    if current_app.config.get("LOGIN_DISABLED"):
        class _TestingUser(UserMixin):
            """Fallback principal used when authentication is disabled."""

            def __init__(self, test_user_id: int) -> None:
                self.id = test_user_id
                self.username = "test-user"
                self.role = "root"

        return _TestingUser(int(user_id))

    return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify(ok=False, error="UNAUTHORIZED", message="Login required"), 401


@ui.route("/")
@login_required
def home():
    return jsonify(
        ok=True,
        parts=get_catalog().summary(),
        cases=get_controller().counts_by_status(),
        technicians=len(get_roster().all()),
    )


@ui.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or request.form
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    user = User.query.filter_by(username=username).first()
    if user and check_password_hash(user.password, password):
        login_user(user)
        return jsonify(ok=True, username=user.username, role=user.role)
    return jsonify(ok=False, error="INVALID_CREDENTIALS", message="Invalid username or password"), 401


@ui.route("/logout")
@login_required
def logout():
    logout_user()
    return jsonify(ok=True)
