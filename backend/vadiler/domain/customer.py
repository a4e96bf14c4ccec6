"""
Customer Domain Model

Registered storefront customers. The password column is never serialized.
"""
import random
import string
import time
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Any

from pydantic import BaseModel, Field, ConfigDict

from vadiler.domain.serialization import to_camel_case

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(number: int) -> str:
    if number == 0:
        return '0'
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return ''.join(reversed(digits))


def generate_customer_id() -> str:
    """cust_<base36 epoch ms><random base36 suffix>"""
    suffix = ''.join(random.choices(_BASE36, k=11))
    return f"cust_{_to_base36(int(time.time() * 1000))}{suffix}"


class Customer(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = Field(None, exclude=True)

    addresses: List[Any] = Field(default_factory=list)
    orders: List[Any] = Field(default_factory=list)
    favorites: List[Any] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = ''

    total_spent: Decimal = Field(Decimal('0'))
    order_count: int = 0
    last_order_date: Optional[datetime] = None
    is_active: Optional[bool] = True

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, extra='ignore')

    @classmethod
    def from_row(cls, row: dict) -> "Customer":
        data = dict(row)
        for key in ('addresses', 'orders', 'favorites', 'tags'):
            if data.get(key) is None:
                data[key] = []
        if data.get('total_spent') is None:
            data['total_spent'] = Decimal('0')
        if data.get('order_count') is None:
            data['order_count'] = 0
        return cls.model_validate(data)

    def to_api(self) -> dict:
        """camelCase customer without password"""
        data = self.model_dump()
        data['total_spent'] = float(data['total_spent'])
        return to_camel_case(data)
