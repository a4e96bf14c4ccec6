"""
Payment Reminders

Scheduled job that emails customers whose order is still waiting for
payment (bank transfer not received, card payment abandoned or failed).

Rules:
- Only orders created in the last 48 hours
- First reminder 1 hour after the order, the next ones 6 and 24 hours after
  the previous reminder
- At most 3 reminders; progress is kept in payment.reminderMeta

Author: TM3
Date: 2025-12-04
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from vadiler.domain.order import Order
from vadiler.domain.serialization import parse_iso
from vadiler.repositories.order_repository import OrderRepository
from vadiler.services.email_service import EmailService, EmailItem, get_email_service, order_email_data

logger = logging.getLogger(__name__)

REMINDER_STATUSES = ('pending_payment', 'awaiting_payment', 'payment_failed')
REMINDER_INTERVALS_HOURS = (1, 6, 24)
MAX_REMINDERS = 3
LOOKBACK = timedelta(hours=48)
MAX_ORDERS_PER_RUN = 200


def get_reminder_meta(payment: Dict[str, Any]) -> Dict[str, Any]:
    meta = payment.get('reminderMeta') if isinstance(payment, dict) else None
    if not isinstance(meta, dict):
        return {'count': 0, 'lastSentAt': None, 'firstSentAt': None}
    count = meta.get('count')
    return {
        'count': count if isinstance(count, int) and not isinstance(count, bool) else 0,
        'lastSentAt': meta.get('lastSentAt') or None,
        'firstSentAt': meta.get('firstSentAt') or None,
    }


def should_send_reminder(order: Order, now: datetime) -> Tuple[bool, str]:
    """(send?, reason) for one order"""
    meta = get_reminder_meta(order.payment)
    count = meta['count']

    if count >= MAX_REMINDERS:
        return False, f"Max reminders reached ({MAX_REMINDERS})"

    interval = REMINDER_INTERVALS_HOURS[min(count, len(REMINDER_INTERVALS_HOURS) - 1)]

    if count == 0:
        if order.created_at is None:
            return False, 'Unknown creation time'
        created_at = order.created_at if order.created_at.tzinfo else order.created_at.replace(tzinfo=timezone.utc)
        hours = (now - created_at).total_seconds() / 3600
        if hours < interval:
            return False, f"Too early for first reminder ({hours:.1f}h < {interval}h)"
    else:
        last_sent = parse_iso(meta['lastSentAt'])
        if last_sent is not None:
            hours = (now - last_sent).total_seconds() / 3600
            if hours < interval:
                return False, f"Too early for next reminder ({hours:.1f}h < {interval}h)"

    return True, 'Ready to send'


class PaymentReminderService:

    def __init__(
        self,
        order_repo: Optional[OrderRepository] = None,
        email_service: Optional[EmailService] = None,
    ):
        self.order_repo = order_repo or OrderRepository()
        self._email_service = email_service

    @property
    def email_service(self) -> EmailService:
        if self._email_service is None:
            self._email_service = get_email_service()
        return self._email_service

    def send_reminders(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)

        orders = self.order_repo.find_stuck_payments(
            statuses=list(REMINDER_STATUSES),
            created_after=now - LOOKBACK,
            created_before=now,
            limit=MAX_ORDERS_PER_RUN,
        )
        if not orders:
            logger.info("No pending payment orders found")
            return {'success': True, 'message': 'No pending payment orders', 'processed': 0, 'sent': 0}

        logger.info(f"Found {len(orders)} orders to check for payment reminders")

        processed = 0
        sent = 0
        results = []

        for order in orders:
            processed += 1

            if not (order.customer_email or '').strip():
                results.append(self._result(order, 'skipped_no_email'))
                continue

            should_send, reason = should_send_reminder(order, now)
            if not should_send:
                results.append(self._result(order, f"skipped: {reason}"))
                continue

            if self._send(order, now):
                sent += 1
                results.append(self._result(order, 'reminder_sent'))
            else:
                results.append(self._result(order, 'send_failed'))

        logger.info(f"Payment reminders completed. Processed: {processed}, Sent: {sent}")
        return {'success': True, 'processed': processed, 'sent': sent, 'results': results}

    def _send(self, order: Order, now: datetime) -> bool:
        meta = get_reminder_meta(order.payment)

        data = order_email_data(order)
        if not data.items:
            data.items = [EmailItem(name='Çiçek Siparişi', quantity=1, price=order.total_amount)]

        try:
            delivered = self.email_service.send_payment_reminder(data, order.status, meta['count'] + 1)
        except Exception as e:
            logger.error(f"Error sending payment reminder for order #{order.order_number}: {e}")
            return False

        if not delivered:
            logger.error(f"Failed to send payment reminder for order #{order.order_number}")
            return False

        sent_at = now.isoformat()
        try:
            self.order_repo.update_fields(order.id, {
                'payment': {
                    **order.payment,
                    'reminderMeta': {
                        'count': meta['count'] + 1,
                        'lastSentAt': sent_at,
                        'firstSentAt': meta['firstSentAt'] or sent_at,
                    },
                },
            })
        except Exception as e:
            logger.error(f"Failed to record reminder on order #{order.order_number}: {e}")

        logger.info(f"Sent reminder #{meta['count'] + 1} for order #{order.order_number}")
        return True

    @staticmethod
    def _result(order: Order, action: str) -> Dict[str, Any]:
        return {'orderNumber': order.order_number, 'status': order.status, 'action': action}
