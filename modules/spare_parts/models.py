"""SQLAlchemy table backing the spare parts collection."""

from extensions import db
from models import RecordMixin


class SparePartRow(RecordMixin, db.Model):
    """Stored form of a spare part; column names match ``SparePart`` fields."""

    __tablename__ = "spare_parts"

    id = db.Column(db.String(32), primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    unit = db.Column(db.String(32), nullable=False, default="pcs")
    total_stock = db.Column(db.Integer, nullable=False, default=0)
    remaining_stock = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)
    created_at = db.Column(db.DateTime(timezone=True))
    updated_at = db.Column(db.DateTime(timezone=True))

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<SparePart {self.id}: {self.name} {self.remaining_stock}/{self.total_stock}>"
