"""SQLAlchemy table backing the maintenance cases collection."""

from extensions import db
from models import RecordMixin


class MaintenanceCaseRow(RecordMixin, db.Model):
    """Stored form of a maintenance case.

    ``spare_parts_used`` is the embedded usage ledger: a JSON list of
    ``{"part_id", "part_name", "quantity"}`` objects.
    """

    __tablename__ = "maintenance_cases"

    id = db.Column(db.String(32), primary_key=True)
    account_number = db.Column(db.String(64), nullable=False, index=True)
    reference_number = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(150), nullable=False)
    product_type = db.Column(db.String(100))
    issue = db.Column(db.String(255))
    issue_details = db.Column(db.Text)
    maintenance_status = db.Column(db.String(32), nullable=False, default="Received")
    maintenance_action_taken = db.Column(db.Text)
    technician_id = db.Column(db.String(64))
    technician_name = db.Column(db.String(150))
    district = db.Column(db.String(100))
    service_center = db.Column(db.String(150))
    spare_parts_used = db.Column(db.JSON, nullable=False, default=list)
    created_by = db.Column(db.String(150))
    created_at = db.Column(db.DateTime(timezone=True))
    updated_at = db.Column(db.DateTime(timezone=True))

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<MaintenanceCase {self.id}: {self.reference_number}>"
