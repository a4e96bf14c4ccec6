"""
Admin API - dashboard endpoints for the /yonetim panel

Endpoints:
- GET  /api/admin/sales-report    - Paid-order sales by product and district
- GET  /api/admin/settings        - All settings (private included)
- PUT  /api/admin/settings        - Update one key or a batch of keys
- POST /api/admin/settings        - Clear the settings cache
- GET  /api/admin/order-counter   - Order number sequence state
- POST /api/admin/order-counter   - Reset the order number sequence

Every endpoint requires an admin JWT.

Author: TM3
Date: 2025-12-04
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from vadiler.api.deps import read_json_body
from vadiler.core.auth import TokenUser, require_admin
from vadiler.services.order_number_service import (
    DEFAULT_START_NUMBER,
    OrderNumberService,
    is_valid_order_number,
)
from vadiler.services.sales_report_service import SalesReportService
from vadiler.services.settings_manager import SettingsManager, get_settings_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


def get_sales_report_service() -> SalesReportService:
    return SalesReportService()


def get_order_number_service() -> OrderNumberService:
    return OrderNumberService()


# ============================================================================
# Sales report
# ============================================================================

@router.get("/sales-report")
async def get_sales_report(
    start: Optional[str] = Query(None, description="ISO start date"),
    end: Optional[str] = Query(None, description="ISO end date"),
    service: SalesReportService = Depends(get_sales_report_service)
) -> Dict[str, Any]:
    try:
        return service.get_report(start=start, end=end)
    except Exception as e:
        logger.error(f"Sales report query error: {e}")
        raise HTTPException(status_code=500, detail="Veri alınamadı")


# ============================================================================
# Settings
# ============================================================================

@router.get("/settings")
async def get_all_settings(
    category: Optional[str] = Query(None),
    manager: SettingsManager = Depends(get_settings_manager)
):
    try:
        if category:
            return {"category": category, "settings": manager.get_category(category, public_only=False)}
        return {"settings": manager.get_all(public_only=False)}
    except Exception as e:
        logger.error(f"Error fetching settings: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch settings")


@router.put("/settings")
async def update_settings(
    request: Request,
    user: TokenUser = Depends(require_admin),
    manager: SettingsManager = Depends(get_settings_manager)
):
    body = await read_json_body(request)
    body = body if isinstance(body, dict) else {}

    category = body.get('category')
    key = body.get('key')
    updates = body.get('updates')

    try:
        if category and isinstance(updates, dict):
            results = [manager.set(category, update_key, value) for update_key, value in updates.items()]
            logger.info(f"Settings {category} updated by {user.email}: {list(updates)}")
            return {"success": True, "data": results}

        if not category or not key or 'value' not in body:
            raise HTTPException(
                status_code=400,
                detail="Missing required fields: category with updates object, or category, key, and value"
            )

        result = manager.set(category, key, body['value'])
        logger.info(f"Setting {category}.{key} updated by {user.email}")
        return {"success": True, "data": result}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating setting: {e}")
        raise HTTPException(status_code=500, detail="Failed to update setting")


@router.post("/settings")
async def clear_settings_cache(
    request: Request,
    manager: SettingsManager = Depends(get_settings_manager)
):
    body = await read_json_body(request)
    category = body.get('category') if isinstance(body, dict) else None

    if category:
        manager.clear_category_cache(category)
    else:
        manager.clear_cache()

    return {"success": True, "message": "Cache cleared"}


# ============================================================================
# Order number counter
# ============================================================================

@router.get("/order-counter")
async def get_order_counter(service: OrderNumberService = Depends(get_order_number_service)):
    try:
        info = service.get_counter_info()
    except Exception as e:
        logger.error(f"Error getting counter info: {e}")
        raise HTTPException(status_code=500, detail="Counter bilgisi alınamadı.")

    return {
        "success": True,
        "counter": info,
        "nextOrderNumber": info['nextOrderNumber'],
        "totalOrders": info['totalOrders'],
    }


@router.post("/order-counter")
async def reset_order_counter(
    request: Request,
    service: OrderNumberService = Depends(get_order_number_service)
):
    body = await read_json_body(request)
    start_number = body.get('startNumber') if isinstance(body, dict) else None

    if start_number and not is_valid_order_number(start_number):
        raise HTTPException(status_code=400, detail="Başlangıç numarası 100000 ile 999999 arasında olmalıdır.")

    try:
        counter = service.reset_counter(int(float(start_number)) if start_number else DEFAULT_START_NUMBER)
    except Exception as e:
        logger.error(f"Error resetting counter: {e}")
        raise HTTPException(status_code=500, detail="Counter sıfırlanırken hata oluştu.")

    return {"success": True, "message": "Counter sıfırlandı.", "counter": counter}
