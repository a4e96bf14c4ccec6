"""
Coupon Domain Model
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Coupon(BaseModel):
    id: int
    code: str
    type: str  # 'percentage' | 'fixed'
    value: Decimal
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    usage_limit: Optional[int] = None
    used_count: int = 0
    min_order_amount: Decimal = Decimal('0')
    max_discount_amount: Optional[Decimal] = None

    model_config = ConfigDict(from_attributes=True, extra='ignore')

    def calculate_discount(self, order_total: float) -> float:
        """Discount in TL for the given order total"""
        if self.type == 'percentage':
            # whole TL, half rounds up
            discount = float((Decimal(str(order_total)) * self.value / Decimal('100')).quantize(Decimal('1'), rounding=ROUND_HALF_UP))
            if self.max_discount_amount and discount > float(self.max_discount_amount):
                discount = float(self.max_discount_amount)
            return discount
        if self.type == 'fixed':
            return float(self.value)
        return 0.0

    def summary(self) -> dict:
        return {
            'id': self.id,
            'code': self.code,
            'type': self.type,
            'value': float(self.value),
        }
