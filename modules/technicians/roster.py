"""Technician roster.

A technician is a named person attached to a service center. Cases point at
a technician by id and keep the technician's name as it was when assigned.
"""

import logging
import re
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime
from typing import List, Optional

from errors import RecordMissing, TechnicianNotFound, ValidationError
from gateway import TECHNICIANS, dedupe_by_id, get_gateway
from utils import new_id, utcnow

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = {"full_name": "Full name", "service_center": "Service center"}
EDITABLE_FIELDS = ("full_name", "service_center", "district")


@dataclass(frozen=True)
class Technician:
    id: str
    full_name: str
    service_center: str
    username: str
    district: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: dict) -> "Technician":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in record.items() if k in known})

    def to_record(self) -> dict:
        return asdict(self)

    def as_json(self) -> dict:
        data = self.to_record()
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return data


def base_username(full_name: str) -> str:
    """``"Jane  Doe"`` -> ``"jane.doe"``."""
    return re.sub(r"\s+", ".", full_name.strip().lower())


def _clean(raw: dict, creating: bool) -> dict:
    cleaned = {}
    for key in EDITABLE_FIELDS:
        if key in raw:
            value = raw[key]
            cleaned[key] = (str(value).strip() or None) if value is not None else None

    for key, label in REQUIRED_FIELDS.items():
        if (creating or key in cleaned) and not cleaned.get(key):
            raise ValidationError(f"{label} is required", field=key)
    return cleaned


class TechnicianRoster:
    def __init__(self, gateway):
        self.gateway = gateway

    def all(self) -> List[Technician]:
        return [Technician.from_record(r) for r in dedupe_by_id(self.gateway.get(TECHNICIANS))]

    def find(self, technician_id: str) -> Optional[Technician]:
        for technician in self.all():
            if technician.id == technician_id:
                return technician
        return None

    def get(self, technician_id: str) -> Technician:
        technician = self.find(technician_id)
        if technician is None:
            raise TechnicianNotFound(technician_id)
        return technician

    def search(self, query: str = "", service_center: str = None) -> List[Technician]:
        needle = (query or "").strip().lower()
        result = []
        for technician in self.all():
            if service_center and technician.service_center != service_center:
                continue
            if needle and needle not in f"{technician.full_name} {technician.username}".lower():
                continue
            result.append(technician)
        return result

    def _unique_username(self, full_name: str, exclude_id: str = None) -> str:
        taken = {t.username for t in self.all() if t.id != exclude_id}
        base = base_username(full_name)
        username, counter = base, 1
        while username in taken:
            username = f"{base}.{counter}"
            counter += 1
        return username

    def create(self, raw: dict) -> Technician:
        cleaned = _clean(raw, creating=True)
        now = utcnow()
        technician = Technician(
            id=new_id(),
            username=self._unique_username(cleaned["full_name"]),
            created_at=now,
            updated_at=now,
            **cleaned,
        )
        stored = Technician.from_record(self.gateway.add(TECHNICIANS, technician.to_record()))
        logger.info("Added technician %s (%s, %s)", stored.id, stored.full_name, stored.service_center)
        return stored

    def edit(self, technician_id: str, raw: dict) -> Technician:
        """Change name, service center or district. A new name renames the login too."""
        cleaned = _clean(raw, creating=False)
        current = self.get(technician_id)
        if cleaned.get("full_name") and cleaned["full_name"] != current.full_name:
            cleaned["username"] = self._unique_username(cleaned["full_name"], exclude_id=technician_id)
        edited = replace(current, updated_at=utcnow(), **cleaned)

        record = edited.to_record()
        del record["id"]
        try:
            self.gateway.update(TECHNICIANS, technician_id, record)
        except RecordMissing:
            raise TechnicianNotFound(technician_id) from None
        return edited

    def delete(self, technician_id: str) -> Technician:
        """Remove a technician. Cases keep the name they were assigned under."""
        technician = self.get(technician_id)
        try:
            self.gateway.delete(TECHNICIANS, technician_id)
        except RecordMissing:
            raise TechnicianNotFound(technician_id) from None
        logger.info("Removed technician %s (%s)", technician_id, technician.full_name)
        return technician


def get_roster() -> TechnicianRoster:
    return TechnicianRoster(get_gateway())
