"""Shared SQLAlchemy models."""

from flask_login import UserMixin

from extensions import db


class RecordMixin:
    """Converts a row to and from the plain dict records the gateway trades in."""

    @classmethod
    def column_names(cls) -> list[str]:
        return [column.name for column in cls.__table__.columns]

    @classmethod
    def from_record(cls, record: dict):
        row = cls()
        row.apply(record, include_id=True)
        return row

    def to_record(self) -> dict:
        record = {}
        for name in self.column_names():
            value = getattr(self, name)
            # JSON columns hand back the live list; give callers their own copy
            record[name] = [dict(item) for item in value] if isinstance(value, list) else value
        return record

    def apply(self, fields: dict, include_id: bool = False) -> None:
        for name in self.column_names():
            if name == "id" and not include_id:
                continue
            if name in fields:
                setattr(self, name, fields[name])


class User(UserMixin, db.Model):
    """Represents an authenticated application user."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(150), unique=True, nullable=False)
    password = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(50), nullable=False)  # user, admin, root

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<User {self.username}>"
