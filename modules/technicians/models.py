"""SQLAlchemy table backing the technicians collection."""

from extensions import db
from models import RecordMixin


class TechnicianRow(RecordMixin, db.Model):
    __tablename__ = "technicians"

    id = db.Column(db.String(32), primary_key=True)
    full_name = db.Column(db.String(150), nullable=False)
    service_center = db.Column(db.String(150), nullable=False)
    username = db.Column(db.String(150), nullable=False, unique=True)
    district = db.Column(db.String(100))
    created_at = db.Column(db.DateTime(timezone=True))
    updated_at = db.Column(db.DateTime(timezone=True))

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Technician {self.id}: {self.full_name} @ {self.service_center}>"
