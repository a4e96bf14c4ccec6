"""
Order Domain Models

An order row keeps its nested structures (products, delivery, payment,
timeline) in JSON columns. The model exposes typed top-level fields and
leaves the JSON payloads as plain dicts/lists.

Author: TM3
Date: 2025-10-17
Updated: 2025-12-04 (storefront orders: JSON payment/delivery/timeline)
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal

from vadiler.domain.serialization import now_iso, to_camel_case


# Statuses an order can be in
ORDER_STATUSES = {
    'pending',
    'pending_payment',
    'payment_failed',
    'confirmed',
    'processing',
    'preparing',
    'shipped',
    'on_the_way',
    'delivered',
    'cancelled',
    'failed',
}

# Status changes that notify the customer by email
STATUS_EMAIL_STATUSES = {'confirmed', 'processing', 'shipped', 'delivered', 'cancelled'}

# Statuses still waiting for the card payment to be confirmed
PENDING_PAYMENT_STATUSES = ('pending', 'pending_payment')


class TimelineEntry(BaseModel):
    """One entry of the order audit trail (orders.timeline JSON array)"""

    status: str
    timestamp: str = Field(default_factory=now_iso)
    note: Optional[str] = None
    automated: Optional[bool] = None

    def to_dict(self) -> dict:
        return self.model_dump(exclude_none=True)


class Order(BaseModel):
    """
    Order domain model - a storefront purchase

    Money columns are Decimal in the database and floats on the wire.
    """

    id: str = Field(..., description="Order ID (uuid)")
    order_number: Optional[int] = Field(None, description="6-digit public order number")

    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    is_guest: Optional[bool] = None

    products: List[Dict[str, Any]] = Field(default_factory=list)
    delivery: Dict[str, Any] = Field(default_factory=dict)
    payment: Dict[str, Any] = Field(default_factory=dict)
    timeline: List[Dict[str, Any]] = Field(default_factory=list)

    message: Optional[Any] = None
    subtotal: Decimal = Field(Decimal('0'))
    discount: Decimal = Field(Decimal('0'))
    delivery_fee: Decimal = Field(Decimal('0'))
    total: Decimal = Field(Decimal('0'))

    status: str = Field('pending')
    order_time_group: Optional[str] = None
    notes: Optional[str] = None
    tracking_url: Optional[str] = None
    refund: Optional[Dict[str, Any]] = None

    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={
            Decimal: float,
            datetime: lambda v: v.isoformat()
        }
    )

    @classmethod
    def from_row(cls, row: dict) -> "Order":
        data = dict(row)
        data['id'] = str(data['id'])
        for key in ('products', 'timeline'):
            if not isinstance(data.get(key), list):
                data[key] = []
        for key in ('delivery', 'payment'):
            if not isinstance(data.get(key), dict):
                data[key] = {}
        for key in ('subtotal', 'discount', 'delivery_fee', 'total'):
            if data.get(key) is None:
                data[key] = Decimal('0')
        return cls.model_validate(data)

    @property
    def payment_status(self) -> Optional[str]:
        return self.payment.get('status')

    @property
    def is_paid(self) -> bool:
        return (self.payment_status or '').lower() == 'paid'

    @property
    def total_amount(self) -> float:
        return float(self.total or 0)

    def to_dict(self) -> dict:
        """Convert to dictionary with Decimal to float conversion"""
        data = self.model_dump()

        for field in ['subtotal', 'discount', 'delivery_fee', 'total']:
            if data.get(field) is not None:
                data[field] = float(data[field])

        return data

    def to_api(self) -> dict:
        """camelCase representation returned by the REST API"""
        return to_camel_case(self.to_dict())


def status_email_already_sent(timeline: Optional[List[Any]], status: str) -> bool:
    """True when the timeline records a successful status email for this status"""
    if not isinstance(timeline, list):
        return False
    target = (status or '').lower()
    for entry in timeline:
        if not isinstance(entry, dict):
            continue
        if (
            str(entry.get('type') or '').lower() == 'notification'
            and str(entry.get('channel') or '').lower() == 'email'
            and str(entry.get('event') or '').lower() == 'order_status'
            and str(entry.get('status') or '').lower() == target
            and entry.get('success') is True
        ):
            return True
    return False


def status_email_entry(status: str) -> dict:
    """Timeline marker appended after a status email was sent"""
    return {
        'type': 'notification',
        'channel': 'email',
        'event': 'order_status',
        'status': status,
        'timestamp': now_iso(),
        'success': True,
        'automated': False,
    }
