"""
Payment API - iyzico Checkout Form / 3DS

Endpoints:
- POST /api/payment/initialize   - Start a Checkout Form for an order
- POST /api/payment/complete     - Finalize after the gateway redirect (JSON body)
- GET  /api/payment/complete     - Same, from browser navigation (query params)
- POST /api/payment/callback     - Gateway / bank callback (form body)
- GET  /api/payment/callback     - Same, for providers that use GET
- POST /api/payment/webhook      - Server-to-server notification (signed)
- POST /payment/complete         - Legacy bank redirect -> complete-view page
- GET  /payment/complete         - Legacy redirect, query params preserved

Responses keep the {success, error, ...} shape because the payment pages
read those fields directly.

Author: TM3
Date: 2025-12-04
"""
import json
import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from vadiler.api.deps import json_error, read_json_body
from vadiler.core.config import settings
from vadiler.services.checkout_service import CheckoutService
from vadiler.services.payment_completion_service import PaymentCompletionService
from vadiler.services.payment_helpers import get_client_ip, validate_3ds_status
from vadiler.services.webhook_service import WebhookService, verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment", tags=["Payment"])
pages_router = APIRouter(prefix="/payment", tags=["Payment Pages"])


# ============================================================================
# Dependencies
# ============================================================================

def get_checkout_service() -> CheckoutService:
    return CheckoutService()


def get_completion_service() -> PaymentCompletionService:
    return PaymentCompletionService()


def get_webhook_service() -> WebhookService:
    return WebhookService()


def app_url(request: Request) -> str:
    return (settings.APP_URL or str(request.base_url)).rstrip('/')


def _redirect(base: str, path: str, params: Dict[str, str], status_code: int = 307) -> RedirectResponse:
    query = urlencode(params)
    url = f"{base}{path}?{query}" if query else f"{base}{path}"
    return RedirectResponse(url=url, status_code=status_code)


# ============================================================================
# Initialize / complete
# ============================================================================

@router.post("/initialize")
async def initialize_payment(
    request: Request,
    service: CheckoutService = Depends(get_checkout_service)
):
    body = await read_json_body(request)
    if not isinstance(body, dict):
        body = {}

    try:
        status_code, content = await service.initialize_payment(body, get_client_ip(request.headers))
    except Exception as e:
        logger.error(f"Payment initialize error: {e}")
        return json_error('Internal server error', 500, details=str(e))

    return JSONResponse(status_code=status_code, content=content)


@router.post("/complete")
async def complete_payment_post(
    request: Request,
    service: PaymentCompletionService = Depends(get_completion_service)
):
    body = await read_json_body(request)
    if not isinstance(body, dict):
        body = {}

    try:
        status_code, content = await service.complete_payment(
            payment_id=body.get('paymentId'),
            token=body.get('token'),
            conversation_id=body.get('conversationId'),
        )
    except Exception as e:
        logger.error(f"Payment completion exception: {e}")
        return json_error('Internal server error', 500, details=str(e))

    return JSONResponse(status_code=status_code, content=content)


@router.get("/complete")
async def complete_payment_get(
    paymentId: Optional[str] = None,
    token: Optional[str] = None,
    conversationId: Optional[str] = None,
    service: PaymentCompletionService = Depends(get_completion_service)
):
    """Browser refresh safe: an already paid order is answered without calling iyzico"""
    try:
        status_code, content = await service.complete_payment(
            payment_id=paymentId,
            token=token,
            conversation_id=conversationId,
            early_idempotency=True,
        )
    except Exception as e:
        logger.error(f"Payment completion exception (GET): {e}")
        return json_error('Internal server error', 500)

    return JSONResponse(status_code=status_code, content=content)


# ============================================================================
# Callback
# ============================================================================

def callback_redirect(base: str, params: Mapping[str, Any]) -> RedirectResponse:
    """Route a gateway callback to the complete or failure page"""
    token = params.get('token')
    if token:
        query = {'token': token}
        if params.get('conversationId'):
            query['conversationId'] = params['conversationId']
        return _redirect(base, '/payment/complete', query)

    payment_id = params.get('paymentId')
    conversation_id = params.get('conversationId')
    md_status = params.get('mdStatus')

    logger.info(
        f"3DS callback received: paymentId={payment_id} conversationId={conversation_id} "
        f"mdStatus={md_status} status={params.get('status')}"
    )

    if not payment_id or not conversation_id or not md_status:
        return _redirect(base, '/payment/failure', {'error': 'Missing callback parameters'})

    is_valid, message = validate_3ds_status(md_status)
    if not is_valid:
        return _redirect(base, '/payment/failure', {'error': message, 'conversationId': conversation_id})

    return _redirect(base, '/payment/complete', {
        'paymentId': payment_id,
        'conversationId': conversation_id,
        'mdStatus': md_status,
    })


@router.post("/callback")
async def payment_callback_post(request: Request):
    base = app_url(request)
    try:
        form = await request.form()
        params = {key: str(value) for key, value in form.items()}
        return callback_redirect(base, params)
    except Exception as e:
        logger.error(f"Callback processing error: {e}")
        return _redirect(base, '/payment/failure', {'error': 'Callback processing failed'})


@router.get("/callback")
async def payment_callback_get(request: Request):
    base = app_url(request)
    try:
        return callback_redirect(base, dict(request.query_params))
    except Exception as e:
        logger.error(f"Callback processing error (GET): {e}")
        return _redirect(base, '/payment/failure', {'error': 'Callback processing failed'})


# ============================================================================
# Webhook
# ============================================================================

@router.post("/webhook")
async def payment_webhook(
    request: Request,
    service: WebhookService = Depends(get_webhook_service)
):
    try:
        raw = await request.body()
        payload = json.loads(raw or b'{}')
        if not isinstance(payload, dict):
            raise ValueError("Webhook payload must be a JSON object")

        signature = request.headers.get('x-iyz-signature-v3')
        if not verify_webhook_signature(payload, signature):
            return JSONResponse(status_code=401, content={'error': 'Invalid signature'})

        status_code, content = service.handle(payload)
        return JSONResponse(status_code=status_code, content=content)

    except Exception as e:
        # 200 so iyzico does not keep retrying
        logger.error(f"Webhook processing error: {e}")
        return JSONResponse(status_code=200, content={'error': 'Webhook processing failed', 'details': str(e)})


# ============================================================================
# Legacy /payment/complete (bank POSTs straight to the page URL)
# ============================================================================

@pages_router.post("/complete")
async def legacy_payment_complete_post(request: Request):
    base = app_url(request)
    try:
        token = None
        content_type = request.headers.get('content-type', '')

        if 'application/x-www-form-urlencoded' in content_type or 'multipart/form-data' in content_type:
            form = await request.form()
            token = form.get('token') or form.get('paymentId')
        elif 'application/json' in content_type:
            body = await read_json_body(request)
            if isinstance(body, dict):
                token = body.get('token') or body.get('paymentId')

        if not token:
            token = request.query_params.get('token')

        if not token:
            return _redirect(base, '/payment/complete-view', {'error': 'Ödeme bilgileri eksik'}, 303)

        return _redirect(base, '/payment/complete-view', {'token': str(token)}, 303)

    except Exception as e:
        logger.error(f"Legacy payment complete error: {e}")
        return _redirect(base, '/payment/complete-view', {'error': 'Bir hata oluştu'}, 303)


@pages_router.get("/complete")
async def legacy_payment_complete_get(request: Request):
    base = app_url(request)
    return _redirect(base, '/payment/complete-view', dict(request.query_params), 303)
