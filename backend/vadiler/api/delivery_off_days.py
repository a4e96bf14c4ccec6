"""
Delivery Off-Days API

Endpoints:
- GET    /api/delivery-off-days            - Upcoming off days (public, used by the date picker)
- POST   /api/delivery-off-days            - Add an off day (admin)
- POST   /api/delivery-off-days/cleanup    - Remove inactive duplicates (admin)
- PUT    /api/delivery-off-days/{id}       - Update note / active flag / date (admin)
- DELETE /api/delivery-off-days/{id}       - Delete (admin)

Author: TM3
Date: 2025-12-04
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from vadiler.api.deps import read_json_body
from vadiler.core.auth import TokenUser, require_admin
from vadiler.services.delivery_off_day_service import DeliveryOffDayService, OffDayError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/delivery-off-days", tags=["Delivery Off Days"])


def get_off_day_service() -> DeliveryOffDayService:
    return DeliveryOffDayService()


@router.get("")
async def list_off_days(
    include_inactive: bool = Query(False, alias="all", description="Include inactive off days"),
    include_past: bool = Query(False, alias="includePast", description="Include dates before today"),
    service: DeliveryOffDayService = Depends(get_off_day_service)
):
    try:
        return service.list_off_days(include_inactive=include_inactive, include_past=include_past)
    except Exception as e:
        logger.error(f"Error fetching delivery off days: {e}")
        raise HTTPException(status_code=500, detail="Off günler alınamadı")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_off_day(
    request: Request,
    user: TokenUser = Depends(require_admin),
    service: DeliveryOffDayService = Depends(get_off_day_service)
):
    body = await read_json_body(request)
    try:
        off_day = service.create_off_day(body)
    except OffDayError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    logger.info(f"Off day {off_day.off_date} added by {user.email}")
    return {"success": True, "data": off_day.to_api()}


@router.post("/cleanup")
async def cleanup_off_days(
    user: TokenUser = Depends(require_admin),
    service: DeliveryOffDayService = Depends(get_off_day_service)
):
    try:
        return service.cleanup_duplicates()
    except OffDayError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{off_day_id}")
async def update_off_day(
    off_day_id: str,
    request: Request,
    user: TokenUser = Depends(require_admin),
    service: DeliveryOffDayService = Depends(get_off_day_service)
):
    body = await read_json_body(request)
    try:
        off_day = service.update_off_day(off_day_id, body)
    except OffDayError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {"success": True, "data": off_day.to_api()}


@router.delete("/{off_day_id}")
async def delete_off_day(
    off_day_id: str,
    user: TokenUser = Depends(require_admin),
    service: DeliveryOffDayService = Depends(get_off_day_service)
):
    try:
        service.delete_off_day(off_day_id)
    except OffDayError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {"success": True}
