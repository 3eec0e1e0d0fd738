from werkzeug.security import generate_password_hash

from extensions import db
from models import User

ROLES = ("root", "admin", "user")


def create_user(app, username, password, role, reset_password=False):
    """Create a login, or change the password/role of an existing one.

    Returns the ``User`` row, or ``None`` when the name is taken and
    ``reset_password`` was not requested.
    """
    if role not in ROLES:
        raise ValueError(f"Unknown role {role!r}; expected one of {', '.join(ROLES)}")

    with app.app_context():
        user = User.query.filter_by(username=username).first()
        if user and not reset_password:
            print(f"⚠️  User '{username}' already exists with role '{user.role}'.")
            return None

        if user is None:
            user = User(username=username, role=role, password=generate_password_hash(password))
            db.session.add(user)
            action = "Created"
        else:
            user.password = generate_password_hash(password)
            user.role = role
            action = "Updated"

        db.session.commit()
        print(f"✅ {action} user: {username} (role: {role})")
        return user


if __name__ == '__main__':
    import argparse

    from app import create_app

    parser = argparse.ArgumentParser(description='Create or update a login.')
    parser.add_argument('username', help='Username')
    parser.add_argument('password', help='Password')
    parser.add_argument('role', choices=ROLES, help='User role')
    parser.add_argument('--reset-password', action='store_true',
                        help='overwrite password and role if the user exists')

    args = parser.parse_args()
    create_user(create_app(), args.username, args.password, args.role, args.reset_password)
