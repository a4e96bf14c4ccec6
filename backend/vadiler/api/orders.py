"""
Orders API Endpoints
Storefront checkout, admin order management and public order tracking.
Admin-only: deleted order backups, bank transfer confirmation, refunds and
manual payment verification.

Author: TM3
Date: 2025-10-03
Updated: 2025-12-04 (storefront orders: trusted prices, status emails, tracking)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from vadiler.api.deps import json_error, read_json_body
from vadiler.api.payment import get_completion_service
from vadiler.core.auth import TokenUser, require_admin
from vadiler.services.order_service import OrderError, OrderService
from vadiler.services.payment_completion_service import PaymentCompletionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["Orders"])


def get_order_service() -> OrderService:
    return OrderService()


@router.get("")
async def get_orders(
    customer_id: Optional[str] = Query(None, alias="customerId", description="Filter by customer"),
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by order status"),
    limit: Optional[int] = Query(None, ge=1, le=10000),
    offset: int = Query(0, ge=0),
    service: OrderService = Depends(get_order_service)
):
    """Orders newest first, camelCase"""
    try:
        return service.list_orders(customer_id=customer_id, status=status_filter, limit=limit, offset=offset)
    except Exception as e:
        logger.error(f"Error fetching orders: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch orders")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    request: Request,
    service: OrderService = Depends(get_order_service)
):
    body = await read_json_body(request)
    body = body if isinstance(body, dict) else {}

    try:
        order = service.create_order(body, request.headers)
    except OrderError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error creating order: {e}")
        raise HTTPException(status_code=500, detail="Failed to create order")

    return order.to_api()


@router.put("")
async def update_order(
    request: Request,
    user: TokenUser = Depends(require_admin),
    service: OrderService = Depends(get_order_service)
):
    body = await read_json_body(request)
    body = body if isinstance(body, dict) else {}

    try:
        order = service.update_order(body)
    except OrderError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error updating order: {e}")
        raise HTTPException(status_code=500, detail="Failed to update order")

    logger.info(f"Order {order.id} updated by {user.email}")
    return order.to_api()


@router.delete("")
async def delete_order(
    order_id: Optional[str] = Query(None, alias="id"),
    user: TokenUser = Depends(require_admin),
    service: OrderService = Depends(get_order_service)
):
    try:
        backed_up = service.delete_order(order_id)
    except OrderError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error deleting order {order_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete order")

    return {"success": True, "backedUp": backed_up}


@router.post("/track")
async def track_order(
    request: Request,
    service: OrderService = Depends(get_order_service)
):
    """Public tracking page: order number plus email or phone"""
    body = await read_json_body(request)
    body = body if isinstance(body, dict) else {}

    try:
        return service.track_order(body)
    except OrderError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error tracking order: {e}")
        raise HTTPException(status_code=500, detail="Sipariş sorgulanamadı.")


# ============================================================================
# Admin: deleted orders and payment actions
# Declared before /{order_id} so the literal paths win
# ============================================================================

@router.get("/deleted")
async def get_deleted_orders(
    user: TokenUser = Depends(require_admin),
    service: OrderService = Depends(get_order_service)
):
    try:
        return {"orders": service.list_deleted_orders()}
    except Exception as e:
        logger.error(f"Error fetching deleted orders: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch deleted orders")


@router.post("/restore")
async def restore_order(
    request: Request,
    user: TokenUser = Depends(require_admin),
    service: OrderService = Depends(get_order_service)
):
    body = await read_json_body(request)
    body = body if isinstance(body, dict) else {}

    try:
        order = service.restore_order(body.get('deletedOrderId'))
    except OrderError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error restoring order: {e}")
        raise HTTPException(status_code=500, detail="Failed to restore order")

    logger.info(f"Order {order.id} restored by {user.email}")
    return {"success": True, "order": order.to_api(), "message": "Order restored successfully"}


@router.post("/confirm-bank-payment")
async def confirm_bank_payment(
    request: Request,
    user: TokenUser = Depends(require_admin),
    service: OrderService = Depends(get_order_service)
):
    body = await read_json_body(request)
    body = body if isinstance(body, dict) else {}

    try:
        order = service.confirm_bank_payment(body.get('orderId'))
    except OrderError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error confirming bank payment: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    logger.info(f"Bank payment for order {order.id} confirmed by {user.email}")
    return {"success": True}


@router.post("/refund")
async def refund_order(
    request: Request,
    user: TokenUser = Depends(require_admin),
    service: OrderService = Depends(get_order_service)
):
    body = await read_json_body(request)
    body = body if isinstance(body, dict) else {}

    try:
        order = service.refund_order(body)
    except OrderError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error processing refund: {e}")
        raise HTTPException(status_code=500, detail="İade işlemi başarısız.")

    logger.info(f"Order {order.id} refunded by {user.email}")
    return {"success": True, "message": "İade işlemi başarıyla tamamlandı.", "order": order.to_api()}


@router.post("/verify-payment")
async def verify_payment(
    request: Request,
    user: TokenUser = Depends(require_admin),
    service: PaymentCompletionService = Depends(get_completion_service)
):
    """Re-check an unpaid card order against iyzico"""
    body = await read_json_body(request)
    body = body if isinstance(body, dict) else {}

    try:
        status_code, content = await service.verify_payment_manually(body.get('orderId'))
    except Exception as e:
        logger.error(f"Verify payment error: {e}")
        return json_error(f"Bir hata oluştu: {e}", 500)

    return JSONResponse(status_code=status_code, content=content)


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    service: OrderService = Depends(get_order_service)
):
    try:
        return service.get_order(order_id).to_api()
    except OrderError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error reading order {order_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to read order")


@router.patch("/{order_id}")
async def patch_order_status(
    order_id: str,
    request: Request,
    user: TokenUser = Depends(require_admin),
    service: OrderService = Depends(get_order_service)
):
    body = await read_json_body(request)
    body = body if isinstance(body, dict) else {}

    try:
        order = service.patch_status(order_id, body.get('status'))
    except OrderError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error updating order status {order_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update order status")

    return order.to_api()


@router.delete("/{order_id}")
async def delete_order_by_id(
    order_id: str,
    user: TokenUser = Depends(require_admin),
    service: OrderService = Depends(get_order_service)
):
    try:
        backed_up = service.delete_order(order_id)
    except OrderError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Error deleting order {order_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete order")

    return {"success": True, "backedUp": backed_up}
