"""
Checkout Service - starts an iyzico Checkout Form payment for an order

Prices always come from the stored order, never from the client.

Author: TM3
Date: 2025-12-04
"""
import asyncio
import base64
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from vadiler.connectors.iyzico_connector import IyzicoConnector, get_iyzico_connector
from vadiler.core.config import settings
from vadiler.domain.serialization import now_iso
from vadiler.repositories.order_repository import OrderRepository
from vadiler.services.payment_completion_service import PaymentResponse
from vadiler.services.payment_helpers import (
    build_basket_items,
    build_checkout_form_request,
    to_number,
    validate_payment_response,
)

logger = logging.getLogger(__name__)

TOKEN_PERSIST_ATTEMPTS = 3
PHONE_PLACEHOLDER = '5000000000'


def build_callback_url(app_url: Optional[str] = None) -> str:
    """Gateway callback URL; https unless running on localhost"""
    base = (app_url or settings.APP_URL).rstrip('/')
    if base.startswith('http://') and 'localhost' not in base:
        base = 'https://' + base[len('http://'):]
    return f"{base}/api/payment/callback"


class CheckoutService:

    TOKEN_RETRY_DELAY = 0.1

    def __init__(
        self,
        order_repo: Optional[OrderRepository] = None,
        connector: Optional[IyzicoConnector] = None,
    ):
        self.order_repo = order_repo or OrderRepository()
        self._connector = connector

    @property
    def connector(self) -> IyzicoConnector:
        if self._connector is None:
            self._connector = get_iyzico_connector()
        return self._connector

    async def initialize_payment(self, body: Dict[str, Any], ip_address: str) -> PaymentResponse:
        """
        Initialize a Checkout Form for an existing order

        Args:
            body: {orderId, customer?, totalAmount?}
            ip_address: buyer IP forwarded to the gateway

        Returns:
            (status_code, body)
        """
        order_id = body.get('orderId')
        if not order_id:
            return 400, {'success': False, 'error': 'Missing orderId'}

        order = self.order_repo.find_by_id(str(order_id))
        if not order:
            return 404, {'success': False, 'error': 'Order not found'}

        customer = body.get('customer') if isinstance(body.get('customer'), dict) else None
        if not customer or not customer.get('name') or not customer.get('email') or not customer.get('phone'):
            # Paying later from the order tracking page: use the order snapshot
            delivery = order.delivery
            customer = {
                'id': order.customer_id or f"guest_{order.id[:8]}",
                'name': order.customer_name or delivery.get('recipientName') or 'Müşteri',
                'email': order.customer_email or '',
                'phone': order.customer_phone or delivery.get('recipientPhone') or '',
            }
            if not customer['email']:
                return 400, {
                    'success': False,
                    'error': 'Siparişte e-posta bilgisi eksik. Lütfen bizimle iletişime geçin.',
                }
            if not customer['phone']:
                customer['phone'] = PHONE_PLACEHOLDER

        if order.is_paid:
            return 409, {'success': False, 'error': 'Order already paid'}

        basket_items = build_basket_items(order.products)
        if not basket_items:
            return 400, {'success': False, 'error': 'Order has no products'}

        trusted_total = order.total_amount
        client_total = body.get('totalAmount')
        if client_total is not None and to_number(client_total) != trusted_total:
            logger.warning(
                f"Client totalAmount mismatch for order {order.id}: "
                f"client={client_total} trusted={trusted_total}; using order total"
            )

        request = build_checkout_form_request(
            order_id=order.id,
            total=trusted_total,
            customer=customer,
            delivery=order.delivery,
            basket_items=basket_items,
            callback_url=build_callback_url(),
            ip_address=ip_address,
        )

        logger.info(
            f"Initializing Checkout Form for order {order.id}: amount={request['paidPrice']} "
            f"items={len(basket_items)} env={self.connector.get_environment()}"
        )

        result = await self.connector.initialize_checkout_form(request)
        is_valid, error = validate_payment_response(result)
        if not is_valid:
            logger.error(f"Checkout Form initialize failed for order {order.id}: {error}")
            return 400, {'success': False, 'error': error, 'result': result}

        token = result.get('token')
        if token and not await self._persist_token(order.id, order.payment, token):
            return 500, {'success': False, 'error': 'Ödeme başlatılamadı. Lütfen tekrar deneyin.'}

        content = result.get('checkoutFormContent')
        if content:
            html_content = base64.b64encode(content.encode('utf-8')).decode('ascii')
        else:
            html_content = result.get('threeDSHtmlContent')

        return 200, {
            'success': True,
            'paymentId': result.get('paymentId'),
            'token': token,
            'conversationId': result.get('conversationId'),
            'threeDSHtmlContent': html_content,
            'environment': self.connector.get_environment(),
        }

    async def _persist_token(self, order_id: str, existing_payment: Dict[str, Any], token: str) -> bool:
        """Store the token so the callback can resolve the order; retried with backoff"""
        payment = {
            **existing_payment,
            'method': 'credit_card',
            'status': 'pending',
            'token': token,
            'tokenCreatedAt': now_iso(),
        }

        for attempt in range(1, TOKEN_PERSIST_ATTEMPTS + 1):
            try:
                updated = self.order_repo.update_fields(order_id, {
                    'payment': payment,
                    'updated_at': datetime.now(timezone.utc),
                })
                if updated:
                    logger.info(f"Payment token persisted on order {order_id}")
                    return True
                logger.warning(f"Token persistence attempt {attempt}/{TOKEN_PERSIST_ATTEMPTS}: order {order_id} not updated")
            except Exception as e:
                logger.warning(f"Token persistence attempt {attempt}/{TOKEN_PERSIST_ATTEMPTS} failed: {e}")

            if attempt < TOKEN_PERSIST_ATTEMPTS:
                await asyncio.sleep(self.TOKEN_RETRY_DELAY * attempt)

        logger.error(f"Failed to persist payment token for order {order_id} after {TOKEN_PERSIST_ATTEMPTS} attempts")
        return False
