"""
iyzico webhook handling

Server-to-server notifications (X-IYZ-SIGNATURE-V3). The endpoint always
answers 200 after a valid signature so iyzico does not retry on our
processing errors.

Author: TM3
Date: 2025-12-04
"""
import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from vadiler.core.config import settings
from vadiler.domain.order import TimelineEntry
from vadiler.domain.serialization import now_iso
from vadiler.repositories.order_repository import OrderRepository
from vadiler.services.payment_completion_service import PaymentResponse

logger = logging.getLogger(__name__)


def compute_webhook_signatures(secret_key: str, payload: Dict[str, Any]) -> tuple:
    """(documented, legacy) hex HMAC-SHA256 signatures for a payload"""
    data = (
        f"{payload.get('iyziEventType', '')}{payload.get('paymentId', '')}"
        f"{payload.get('paymentConversationId', '')}{payload.get('status', '')}"
    )
    key = secret_key.encode('utf-8')
    documented = hmac.new(key, data.encode('utf-8'), hashlib.sha256).hexdigest()
    legacy = hmac.new(key, f"{secret_key}{data}".encode('utf-8'), hashlib.sha256).hexdigest()
    return documented, legacy


def verify_webhook_signature(payload: Dict[str, Any], signature: Optional[str],
                             secret_key: Optional[str] = None) -> bool:
    if not signature:
        logger.error("Missing webhook signature")
        return False

    secret_key = secret_key if secret_key is not None else settings.IYZICO_SECRET_KEY
    if not secret_key:
        logger.error("IYZICO_SECRET_KEY not configured, cannot verify webhook")
        return False

    documented, legacy = compute_webhook_signatures(secret_key, payload)
    received = signature.encode('utf-8')
    is_valid = (
        hmac.compare_digest(received, documented.encode('utf-8'))
        or hmac.compare_digest(received, legacy.encode('utf-8'))
    )
    if not is_valid:
        logger.error("Invalid webhook signature")
    return is_valid


class WebhookService:

    def __init__(self, order_repo: Optional[OrderRepository] = None):
        self.order_repo = order_repo or OrderRepository()

    def handle(self, payload: Dict[str, Any]) -> PaymentResponse:
        """Apply a verified webhook payload to its order"""
        event_type = payload.get('iyziEventType')
        status = payload.get('status')
        order_id = payload.get('paymentConversationId')
        payment_id = payload.get('paymentId')

        logger.info(f"Webhook received: {event_type} order={order_id} status={status}")

        if event_type == 'payment.success' and status == 'success':
            response = self._handle_success(str(order_id), payment_id)
            if response is not None:
                return response

        if event_type == 'payment.failed' or status == 'failure':
            response = self._handle_failure(str(order_id), payment_id)
            if response is not None:
                return response

        if event_type == 'refund.success':
            self._handle_refund(str(order_id), payment_id)

        return 200, {'success': True}

    def _handle_success(self, order_id: str, payment_id: Optional[str]) -> Optional[PaymentResponse]:
        order = self.order_repo.find_by_id(order_id)
        if not order:
            logger.error(f"Webhook: order {order_id} not found")
            return 404, {'error': 'Order not found'}

        if order.is_paid:
            return 200, {'success': True, 'idempotent': True}

        timestamp = now_iso()
        try:
            self.order_repo.update_fields(order_id, {
                'status': 'confirmed',
                'payment': {
                    **order.payment,
                    'status': 'paid',
                    'transactionId': payment_id,
                    'paidAt': timestamp,
                },
                'timeline': order.timeline + [
                    TimelineEntry(
                        status='confirmed', timestamp=timestamp,
                        note='Ödeme onaylandı (webhook)', automated=True
                    ).to_dict()
                ],
                'updated_at': datetime.now(timezone.utc),
            })
        except Exception as e:
            logger.error(f"Webhook: failed to confirm order {order_id}: {e}")
            return 500, {'error': 'Failed to update order'}

        logger.info(f"Webhook: order {order_id} confirmed")
        return None

    def _handle_failure(self, order_id: str, payment_id: Optional[str]) -> Optional[PaymentResponse]:
        order = self.order_repo.find_by_id(order_id)
        if order and order.is_paid:
            return 200, {'success': True, 'idempotent': True}

        payment = dict(order.payment) if order else {}
        timeline = list(order.timeline) if order else []
        timestamp = now_iso()

        try:
            self.order_repo.update_fields(order_id, {
                'status': 'payment_failed',
                'payment': {**payment, 'status': 'failed', 'transactionId': payment_id},
                'timeline': timeline + [
                    TimelineEntry(
                        status='payment_failed', timestamp=timestamp,
                        note='Ödeme başarısız (webhook)', automated=True
                    ).to_dict()
                ],
                'notes': 'Payment failed (webhook notification)',
                'updated_at': datetime.now(timezone.utc),
            })
            logger.info(f"Webhook: order {order_id} marked payment_failed")
        except Exception as e:
            logger.error(f"Webhook: failed to update failed order {order_id}: {e}")
        return None

    def _handle_refund(self, order_id: str, payment_id: Optional[str]) -> None:
        order = self.order_repo.find_by_id(order_id)
        payment = dict(order.payment) if order else {}
        timeline = list(order.timeline) if order else []
        timestamp = now_iso()

        try:
            self.order_repo.update_fields(order_id, {
                'status': 'cancelled',
                'payment': {**payment, 'status': 'refunded', 'transactionId': payment_id},
                'timeline': timeline + [
                    TimelineEntry(
                        status='cancelled', timestamp=timestamp,
                        note='İade edildi (webhook)', automated=True
                    ).to_dict()
                ],
                'updated_at': datetime.now(timezone.utc),
            })
            logger.info(f"Webhook: refund processed for order {order_id}")
        except Exception as e:
            logger.error(f"Webhook: failed to update refunded order {order_id}: {e}")
