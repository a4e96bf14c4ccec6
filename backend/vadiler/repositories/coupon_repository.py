"""
Coupon Repository

Author: TM3
Date: 2025-12-04
"""
from typing import Optional

from vadiler.domain.coupon import Coupon
from vadiler.core.database import get_db_connection_dict


class CouponRepository:

    def find_by_code(self, code: str) -> Optional[Coupon]:
        """Codes are stored upper-case"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT * FROM coupons WHERE code = %s LIMIT 1", ((code or '').upper(),))
            row = cursor.fetchone()
            return Coupon.model_validate(dict(row)) if row else None

        finally:
            cursor.close()
            conn.close()

    def increment_used_count(self, coupon_id: int) -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                "UPDATE coupons SET used_count = used_count + 1 WHERE id = %s",
                (coupon_id,)
            )
            conn.commit()

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()
