"""
Coupons API

POST /api/coupons/validate  {code, orderTotal}

Author: TM3
Date: 2025-12-04
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from vadiler.api.deps import read_json_body
from vadiler.services.coupon_service import CouponError, CouponService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/coupons", tags=["Coupons"])


def get_coupon_service() -> CouponService:
    return CouponService()


@router.post("/validate")
async def validate_coupon(
    request: Request,
    service: CouponService = Depends(get_coupon_service)
):
    body = await read_json_body(request)
    body = body if isinstance(body, dict) else {}

    try:
        return service.validate(body.get('code'), body.get('orderTotal'))
    except CouponError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Coupon validation error: {e}")
        raise HTTPException(status_code=500, detail="Kupon doğrulanamadı.")
