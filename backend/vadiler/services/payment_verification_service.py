"""
Stuck Payment Verification

Scheduled job (every few minutes) that settles orders whose browser
redirect never reached /api/payment/complete: closed tabs, network errors,
missed webhooks.

Author: TM3
Date: 2025-12-04
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from vadiler.domain.order import PENDING_PAYMENT_STATUSES
from vadiler.repositories.order_repository import OrderRepository
from vadiler.services.payment_completion_service import (
    PaymentCompletionService,
    is_token_expired,
)

logger = logging.getLogger(__name__)

MAX_ORDERS_PER_RUN = 20
MIN_AGE = timedelta(minutes=10)
MAX_AGE = timedelta(hours=24)


class PaymentVerificationService:

    PAUSE_BETWEEN_ORDERS = 0.5

    def __init__(
        self,
        order_repo: Optional[OrderRepository] = None,
        completion_service: Optional[PaymentCompletionService] = None,
    ):
        self.order_repo = order_repo or OrderRepository()
        self.completion_service = completion_service or PaymentCompletionService(order_repo=self.order_repo)

    async def verify_stuck_payments(self, now: Optional[datetime] = None) -> Dict:
        now = now or datetime.now(timezone.utc)

        orders = self.order_repo.find_stuck_payments(
            statuses=list(PENDING_PAYMENT_STATUSES),
            created_after=now - MAX_AGE,
            created_before=now - MIN_AGE,
            limit=MAX_ORDERS_PER_RUN,
        )

        results = {'processed': 0, 'recovered': 0, 'expired': 0, 'failed': 0, 'noToken': 0}

        if not orders:
            logger.info("No stuck orders found")
            return {'success': True, 'message': 'No stuck orders found', **results}

        logger.info(f"Found {len(orders)} potentially stuck orders")

        for order in orders:
            token = order.payment.get('token')
            if not token:
                results['noToken'] += 1
                continue

            if is_token_expired(order.payment.get('tokenCreatedAt'), now):
                logger.info(f"Token expired for order {order.id}, marking as failed")
                results['processed'] += 1
                try:
                    self.order_repo.update_fields(order.id, {
                        'status': 'payment_failed',
                        'payment': {
                            **order.payment,
                            'status': 'failed',
                            'errorMessage': 'Ödeme süresi doldu',
                            'errorCode': 'TOKEN_EXPIRED',
                        },
                        'updated_at': now,
                    })
                except Exception as e:
                    logger.error(f"Could not mark expired order {order.id} as failed: {e}")
                    results['failed'] += 1
                    continue
                results['expired'] += 1
                continue

            logger.info(f"Verifying payment for order {order.id}")
            result = await self.completion_service.complete_payment_server_side(token, order.id)
            results['processed'] += 1

            if result.success:
                logger.info(f"Recovered payment for order {order.id}")
                results['recovered'] += 1
            else:
                logger.warning(f"Payment verification failed for order {order.id}: {result.error}")
                results['failed'] += 1

            await asyncio.sleep(self.PAUSE_BETWEEN_ORDERS)

        logger.info(f"Payment verification completed: {results}")
        return {'success': True, 'message': 'Payment verification completed', **results}
