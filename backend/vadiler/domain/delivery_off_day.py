"""
Delivery off-day domain model

A calendar date on which no deliveries are made (holidays, peak days).
"""
import re
from datetime import date, datetime
from typing import Optional, Any

from pydantic import BaseModel, ConfigDict

DATE_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def is_valid_off_date(value: Any) -> bool:
    return isinstance(value, str) and bool(DATE_REGEX.match(value))


class DeliveryOffDay(BaseModel):
    id: int
    off_date: str
    note: Optional[str] = ""
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_row(cls, row: dict) -> "DeliveryOffDay":
        data = dict(row)
        if isinstance(data.get('off_date'), date):
            data['off_date'] = data['off_date'].isoformat()
        return cls.model_validate(data)

    def to_api(self) -> dict:
        return {
            'id': self.id,
            'offDate': self.off_date,
            'note': self.note or '',
            'isActive': self.is_active,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }
