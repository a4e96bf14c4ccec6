"""
Coupon validation for the cart

Author: TM3
Date: 2025-12-04
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from vadiler.repositories.coupon_repository import CouponRepository

logger = logging.getLogger(__name__)


class CouponError(Exception):

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _format_amount(value: Any) -> str:
    number = float(value or 0)
    return str(int(number)) if number.is_integer() else str(number)


class CouponService:

    def __init__(self, coupon_repo: Optional[CouponRepository] = None):
        self.coupon_repo = coupon_repo or CouponRepository()

    def validate(self, code: Any, order_total: Any, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Validate a coupon code against an order total and consume one use

        Returns:
            {'success': True, 'coupon': {...}, 'discount': float}

        Raises:
            CouponError with the user-facing message
        """
        if not code or not isinstance(code, str):
            raise CouponError('Kupon kodu gereklidir.', 400)

        coupon = self.coupon_repo.find_by_code(code)
        if not coupon:
            raise CouponError('Geçersiz kupon kodu.', 404)

        if not coupon.is_active:
            raise CouponError('Bu kupon artık geçerli değil.', 400)

        now = now or datetime.now(timezone.utc)
        valid_from = coupon.valid_from
        valid_until = coupon.valid_until
        if valid_from and valid_from.tzinfo is None:
            valid_from = valid_from.replace(tzinfo=timezone.utc)
        if valid_until and valid_until.tzinfo is None:
            valid_until = valid_until.replace(tzinfo=timezone.utc)

        if (valid_from and now < valid_from) or (valid_until and now > valid_until):
            raise CouponError('Bu kupon şu anda geçerli değil.', 400)

        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            raise CouponError('Bu kupon kullanım limitine ulaşmış.', 400)

        try:
            total = float(order_total or 0)
        except (TypeError, ValueError):
            total = 0.0
        if not math.isfinite(total):
            raise CouponError('Geçersiz sipariş tutarı.', 400)

        if coupon.min_order_amount and total < float(coupon.min_order_amount):
            raise CouponError(
                f'Bu kuponu kullanmak için minimum {_format_amount(coupon.min_order_amount)} TL sipariş vermelisiniz.',
                400
            )

        discount = coupon.calculate_discount(total)

        self.coupon_repo.increment_used_count(coupon.id)
        logger.info(f"Coupon {coupon.code} applied: discount={discount}")

        return {
            'success': True,
            'coupon': coupon.summary(),
            'discount': discount,
        }
