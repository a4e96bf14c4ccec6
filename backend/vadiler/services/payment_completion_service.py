"""
Payment Completion Service

Finalizes card payments after the iyzico redirect (browser flow) and for the
stuck-payment verifier (server-side flow), plus the admin panel's manual
verification. All flows are idempotent: an order whose payment is already
'paid' is never processed or downgraded again.

Author: TM3
Date: 2025-12-04
"""
import asyncio
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel

from vadiler.connectors.iyzico_connector import IyzicoConnector, get_iyzico_connector
from vadiler.domain.order import Order, TimelineEntry
from vadiler.domain.serialization import now_iso, parse_iso, to_camel_case
from vadiler.repositories.order_repository import OrderRepository
from vadiler.services.email_service import EmailService, get_email_service, order_email_data
from vadiler.services.payment_helpers import validate_payment_response

logger = logging.getLogger(__name__)

# iyzico tokens live ~30 minutes; stop trusting them a little earlier
TOKEN_EXPIRATION_MINUTES = 25

# Allowed difference between the paid amount and the stored order total
AMOUNT_TOLERANCE = 0.01

ORDER_NOT_FOUND_MESSAGE = 'Sipariş bulunamadı. Lütfen sepetinize dönüp tekrar deneyin.'
TOKEN_EXPIRED_MESSAGE = 'Ödeme süresi doldu. Lütfen sayfayı yenileyip tekrar deneyin.'
AMOUNT_MISMATCH_NOTE = 'Ödeme tutarı sipariş toplamıyla eşleşmiyor'

_TURKISH_CHARS = re.compile(r'[ğüşıöçĞÜŞİÖÇ]')

# (status_code, JSON body)
PaymentResponse = Tuple[int, Dict[str, Any]]


# ============================================================================
# Error mapping / token helpers
# ============================================================================

def map_iyzico_error_to_turkish(error_code: Optional[str] = None, error_message: Optional[str] = None) -> str:
    """User-facing Turkish message for an iyzico error code / message"""
    if not error_code and not error_message:
        return 'Ödeme işlemi başarısız oldu. Lütfen tekrar deneyin.'

    code = str(error_code or '').upper()
    message = str(error_message or '').lower()

    if 'TOKEN' in code or 'token' in message:
        if 'expired' in message or 'süre' in message:
            return TOKEN_EXPIRED_MESSAGE
        if 'not found' in message or 'bulunamadı' in message:
            return 'Ödeme oturumu bulunamadı. Lütfen sepetinize dönüp tekrar deneyin.'
        if 'already used' in message or 'kullanılmış' in message:
            return 'Bu ödeme işlemi zaten tamamlandı.'

    if 'güvenlik' in message or 'security' in message or '3ds' in message:
        return 'Banka güvenlik doğrulaması başarısız oldu. Lütfen bankanızla iletişime geçin veya başka bir kart deneyin.'

    if 'DECLINED' in code or 'declined' in message or 'reddedildi' in message:
        return 'Kartınız reddedildi. Lütfen bankanızla iletişime geçin veya başka bir kart deneyin.'

    if 'INSUFFICIENT' in code or 'insufficient' in message or 'yetersiz' in message:
        return 'Kart bakiyeniz yetersiz. Lütfen başka bir kart deneyin.'

    if 'LIMIT' in code or 'limit' in message:
        return 'Kart limitiniz aşıldı. Lütfen başka bir kart deneyin.'

    if 'INVALID' in code or 'invalid' in message or 'geçersiz' in message:
        return 'Kart bilgileri geçersiz. Lütfen bilgileri kontrol edip tekrar deneyin.'

    if 'FRAUD' in code or 'fraud' in message or 'şüpheli' in message:
        return 'İşlem güvenlik nedeniyle reddedildi. Lütfen bankanızla iletişime geçin.'

    if 'TIMEOUT' in code or 'CONNECTION' in code or 'timeout' in message or 'connection' in message:
        return 'Banka bağlantısı zaman aşımına uğradı. Lütfen tekrar deneyin.'

    # iyzico already answered in Turkish
    if error_message and _TURKISH_CHARS.search(error_message):
        return error_message

    return 'Ödeme işlemi başarısız oldu. Lütfen tekrar deneyin veya başka bir kart kullanın.'


def _minutes_since(timestamp: Any, now: Optional[datetime] = None) -> Optional[float]:
    created_at = parse_iso(timestamp)
    if created_at is None:
        return None
    now = now or datetime.now(timezone.utc)
    return (now - created_at).total_seconds() / 60


def is_token_expired(token_created_at: Optional[str], now: Optional[datetime] = None) -> bool:
    """Tokens without a creation timestamp are never considered expired"""
    elapsed = _minutes_since(token_created_at, now)
    if elapsed is None:
        return False
    return elapsed > TOKEN_EXPIRATION_MINUTES


def get_token_remaining_minutes(token_created_at: Optional[str], now: Optional[datetime] = None) -> int:
    elapsed = _minutes_since(token_created_at, now)
    if elapsed is None:
        return TOKEN_EXPIRATION_MINUTES
    remaining = TOKEN_EXPIRATION_MINUTES - elapsed
    return max(0, int(math.floor(remaining + 0.5)))


def _to_float(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _compact(payment: Dict[str, Any]) -> Dict[str, Any]:
    """Drop None values so cleared keys disappear from the JSON column"""
    return {k: v for k, v in payment.items() if v is not None}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentCompletionResult(BaseModel):
    """Outcome of a server-side completion attempt"""

    success: bool
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    paid_amount: Optional[Any] = None
    card_last4: Optional[str] = None
    card_type: Optional[str] = None
    card_association: Optional[str] = None
    installment: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    already_completed: Optional[bool] = None

    def to_api(self) -> dict:
        return to_camel_case(self.model_dump(exclude_none=True))


# ============================================================================
# Service
# ============================================================================

class PaymentCompletionService:
    """
    Payment completion flows

    Handles:
    - Order resolution by conversationId or Checkout Form token
    - Token expiration
    - Idempotency (already paid orders)
    - Completion lock (payment.completionStartedAt) for concurrent callbacks
    - Amount verification against the stored order total
    - Order status / payment / timeline update
    - Confirmation email (best-effort)
    """

    LOCK_WINDOW_SECONDS = 30
    LOCK_WAIT_SECONDS = 2.0

    def __init__(
        self,
        order_repo: Optional[OrderRepository] = None,
        connector: Optional[IyzicoConnector] = None,
        email_service: Optional[EmailService] = None,
    ):
        self.order_repo = order_repo or OrderRepository()
        self._connector = connector
        self._email_service = email_service

    @property
    def connector(self) -> IyzicoConnector:
        if self._connector is None:
            self._connector = get_iyzico_connector()
        return self._connector

    @property
    def email_service(self) -> EmailService:
        if self._email_service is None:
            self._email_service = get_email_service()
        return self._email_service

    # ------------------------------------------------------------------
    # Browser flow: /api/payment/complete
    # ------------------------------------------------------------------

    async def complete_payment(
        self,
        payment_id: Optional[str] = None,
        token: Optional[str] = None,
        conversation_id: Optional[str] = None,
        early_idempotency: bool = False,
    ) -> PaymentResponse:
        """
        Finalize a payment after the gateway redirect

        Args:
            payment_id: 3DS payment id
            token: Checkout Form token
            conversation_id: order id
            early_idempotency: return the cached result for an already paid order
                before calling the gateway (browser refresh on the GET route)

        Returns:
            (status_code, body)
        """
        if not payment_id and not token:
            return 400, {'success': False, 'error': 'Missing paymentId or token'}

        if not conversation_id and token:
            order = self.order_repo.find_by_payment_token(token)
            if not order:
                logger.error(f"Order not found for payment token {token}")
                return 404, {'success': False, 'error': ORDER_NOT_FOUND_MESSAGE}

            if early_idempotency and order.is_paid:
                logger.info(f"Payment already completed for order {order.id}, returning cached result")
                return 200, {
                    'success': True,
                    'orderId': order.id,
                    'paymentId': order.payment.get('transactionId'),
                    'paidAmount': order.payment.get('paidPrice') or order.total_amount,
                    'cardLast4': order.payment.get('cardLast4'),
                    'message': 'Ödeme zaten tamamlandı',
                }

            if is_token_expired(order.payment.get('tokenCreatedAt')):
                logger.warning(f"Payment token expired for order {order.id}")
                return 400, {'success': False, 'error': TOKEN_EXPIRED_MESSAGE}

            conversation_id = order.id

        if not conversation_id:
            return 400, {'success': False, 'error': 'Missing conversationId'}

        logger.info(f"Completing payment: order={conversation_id} paymentId={payment_id} token={bool(token)}")

        if token:
            result = await self.connector.retrieve_checkout_form({
                'locale': 'tr',
                'conversationId': conversation_id,
                'token': token,
            })
        else:
            result = await self.connector.complete_three_ds(payment_id, conversation_id)
        result = result or {}

        is_valid, validation_error = validate_payment_response(result)
        payment_status = result.get('paymentStatus')
        status_failed = bool(token and payment_status and str(payment_status).upper() != 'SUCCESS')

        if not is_valid or status_failed:
            error_message = result.get('errorMessage') or (validation_error if not is_valid else None)
            user_error = map_iyzico_error_to_turkish(result.get('errorCode'), error_message)
            logger.error(
                f"Payment failed for order {conversation_id}: "
                f"{result.get('errorCode')} {result.get('errorMessage') or validation_error}"
            )
            self._mark_failed_quietly(
                conversation_id,
                user_error,
                token=token,
                payment_id=payment_id or result.get('paymentId'),
                error_code=result.get('errorCode'),
                gateway_result=result,
            )
            return 400, {
                'success': False,
                'error': user_error,
                'errorCode': result.get('errorCode'),
                'conversationId': conversation_id,
            }

        order = self.order_repo.find_by_id(conversation_id)
        if not order:
            logger.error(f"Order not found after successful payment: {conversation_id}")
            return 404, {'success': False, 'error': 'Order not found', 'conversationId': conversation_id}

        if order.is_paid:
            return 200, {
                'success': True,
                'orderId': conversation_id,
                'paymentId': order.payment.get('transactionId') or result.get('paymentId'),
                'paidAmount': order.payment.get('paidPrice') or order.total_amount,
                'cardLast4': order.payment.get('cardLast4') or result.get('lastFourDigits'),
                'cardType': order.payment.get('cardType') or result.get('cardType'),
                'message': 'Payment already completed',
            }

        paid = _to_float(result.get('paidPrice'))
        expected = order.total_amount
        if paid is not None and abs(paid - expected) > AMOUNT_TOLERANCE:
            logger.error(f"Paid amount mismatch for order {conversation_id}: paid={paid} expected={expected}")
            self._mark_failed_quietly(
                conversation_id,
                AMOUNT_MISMATCH_NOTE,
                token=token or order.payment.get('token'),
                payment_id=payment_id or result.get('paymentId'),
                gateway_result=result,
            )
            return 400, {
                'success': False,
                'error': 'Paid amount does not match order total',
                'conversationId': conversation_id,
                'paid': paid,
                'expected': expected,
            }

        paid_at = now_iso()
        payment = _compact({
            'method': 'credit_card',
            'status': 'paid',
            'transactionId': result.get('paymentId'),
            'token': token or order.payment.get('token'),
            'cardLast4': result.get('lastFourDigits'),
            'paidAt': paid_at,
            'cardType': result.get('cardType'),
            'cardAssociation': result.get('cardAssociation'),
            'installment': result.get('installment'),
            'paidPrice': result.get('paidPrice'),
        })
        timeline = order.timeline + [
            TimelineEntry(status='confirmed', timestamp=paid_at, note='Ödeme onaylandı', automated=True).to_dict()
        ]

        try:
            updated = self.order_repo.update_fields(conversation_id, {
                'status': 'confirmed',
                'payment': payment,
                'timeline': timeline,
                'updated_at': _utcnow(),
            })
        except Exception as e:
            logger.error(f"Failed to update order {conversation_id}: {e}")
            updated = None

        if not updated:
            return 500, {'success': False, 'error': 'Failed to update order', 'conversationId': conversation_id}

        logger.info(f"Order {conversation_id} confirmed (payment {result.get('paymentId')})")
        self.send_confirmation_email(updated)

        return 200, {
            'success': True,
            'orderId': conversation_id,
            'paymentId': result.get('paymentId'),
            'paidAmount': result.get('paidPrice'),
            'cardLast4': result.get('lastFourDigits'),
            'cardType': result.get('cardType'),
            'message': 'Payment completed successfully',
        }

    # ------------------------------------------------------------------
    # Server-side flow (stuck payment verifier)
    # ------------------------------------------------------------------

    async def complete_payment_server_side(
        self,
        token: str,
        conversation_id: Optional[str] = None,
    ) -> PaymentCompletionResult:
        """Verify a Checkout Form token with iyzico and settle the order"""
        try:
            order = self.order_repo.find_by_id(conversation_id) if conversation_id else None
            if not order:
                order = self.order_repo.find_by_payment_token(token)

            if not order:
                logger.error("Server-side completion: order not found for token")
                return PaymentCompletionResult(
                    success=False,
                    error=ORDER_NOT_FOUND_MESSAGE,
                    error_code='ORDER_NOT_FOUND',
                )

            order_id = order.id
            existing_payment = dict(order.payment)

            if order.is_paid:
                logger.info(f"Server-side completion: order {order_id} already paid, skipping")
                return PaymentCompletionResult(
                    success=True,
                    order_id=order_id,
                    payment_id=existing_payment.get('transactionId'),
                    paid_amount=existing_payment.get('paidPrice'),
                    card_last4=existing_payment.get('cardLast4'),
                    card_type=existing_payment.get('cardType'),
                    card_association=existing_payment.get('cardAssociation'),
                    installment=existing_payment.get('installment'),
                    already_completed=True,
                )

            if is_token_expired(existing_payment.get('tokenCreatedAt')):
                logger.warning(f"Server-side completion: token expired for order {order_id}")
                return PaymentCompletionResult(
                    success=False,
                    order_id=order_id,
                    error=TOKEN_EXPIRED_MESSAGE,
                    error_code='TOKEN_EXPIRED',
                )

            started_at = parse_iso(existing_payment.get('completionStartedAt'))
            if started_at is not None:
                elapsed = (_utcnow() - started_at).total_seconds()
                if elapsed < self.LOCK_WINDOW_SECONDS:
                    logger.info(f"Completion already in progress for order {order_id} ({elapsed:.1f}s), waiting")
                    await asyncio.sleep(self.LOCK_WAIT_SECONDS)
                    refreshed = self.order_repo.find_by_id(order_id)
                    if refreshed and refreshed.is_paid:
                        return PaymentCompletionResult(
                            success=True,
                            order_id=order_id,
                            payment_id=refreshed.payment.get('transactionId'),
                            already_completed=True,
                        )

            lock_time = now_iso()
            self.order_repo.update_fields(order_id, {
                'payment': {**existing_payment, 'completionStartedAt': lock_time},
                'updated_at': _utcnow(),
            })

            try:
                result = await self.connector.retrieve_checkout_form({
                    'locale': 'tr',
                    'conversationId': order_id,
                    'token': token,
                })
            except Exception as e:
                logger.error(f"Server-side completion: iyzico API error for order {order_id}: {e}")
                return PaymentCompletionResult(
                    success=False,
                    order_id=order_id,
                    error=map_iyzico_error_to_turkish(None, str(e)),
                    error_code='IYZICO_API_ERROR',
                )
            result = result or {}

            base_payment = {k: v for k, v in existing_payment.items() if k != 'completionStartedAt'}

            if result.get('status') != 'success' or str(result.get('paymentStatus')).upper() != 'SUCCESS':
                user_error = map_iyzico_error_to_turkish(result.get('errorCode'), result.get('errorMessage'))
                logger.warning(
                    f"Server-side completion: payment not successful for order {order_id} "
                    f"(status={result.get('status')}, paymentStatus={result.get('paymentStatus')}, "
                    f"code={result.get('errorCode')})"
                )

                failed_payment = _compact({
                    **base_payment,
                    'method': 'credit_card',
                    'status': 'failed',
                    'token': token,
                    'errorCode': result.get('errorCode'),
                    'errorMessage': result.get('errorMessage'),
                    'errorGroup': result.get('errorGroup'),
                })
                timeline = order.timeline + [
                    TimelineEntry(status='payment_failed', timestamp=lock_time, note=user_error, automated=True).to_dict()
                ]
                self.order_repo.update_fields(order_id, {
                    'status': 'payment_failed',
                    'payment': failed_payment,
                    'timeline': timeline,
                    'updated_at': _utcnow(),
                })

                return PaymentCompletionResult(
                    success=False,
                    order_id=order_id,
                    error=user_error,
                    error_code=result.get('errorCode') or 'PAYMENT_FAILED',
                )

            paid_payment = _compact({
                **base_payment,
                'method': 'credit_card',
                'status': 'paid',
                'transactionId': result.get('paymentId'),
                'token': token,
                'cardLast4': result.get('lastFourDigits'),
                'paidAt': lock_time,
                'cardType': result.get('cardType'),
                'cardAssociation': result.get('cardAssociation'),
                'installment': result.get('installment'),
                'paidPrice': result.get('paidPrice'),
            })
            timeline = order.timeline + [
                TimelineEntry(status='confirmed', timestamp=lock_time, note='Ödeme onaylandı', automated=True).to_dict()
            ]

            try:
                updated = self.order_repo.update_fields(order_id, {
                    'status': 'confirmed',
                    'payment': paid_payment,
                    'timeline': timeline,
                    'updated_at': _utcnow(),
                })
            except Exception as e:
                logger.error(f"Server-side completion: failed to update order {order_id}: {e}")
                updated = None

            if not updated:
                return PaymentCompletionResult(
                    success=False,
                    order_id=order_id,
                    error='Sipariş güncellenemedi. Lütfen müşteri hizmetleriyle iletişime geçin.',
                    error_code='UPDATE_FAILED',
                )

            logger.info(f"Server-side completion: order {order_id} confirmed (payment {result.get('paymentId')})")
            self.send_confirmation_email(updated)

            return PaymentCompletionResult(
                success=True,
                order_id=order_id,
                payment_id=result.get('paymentId'),
                paid_amount=result.get('paidPrice'),
                card_last4=result.get('lastFourDigits'),
                card_type=result.get('cardType'),
                card_association=result.get('cardAssociation'),
                installment=result.get('installment'),
            )

        except Exception as e:
            logger.error(f"Server-side payment completion error: {e}")
            return PaymentCompletionResult(
                success=False,
                error='Beklenmeyen bir hata oluştu. Lütfen tekrar deneyin.',
                error_code='UNEXPECTED_ERROR',
            )

    # ------------------------------------------------------------------
    # Admin flow: /api/orders/verify-payment
    # ------------------------------------------------------------------

    async def verify_payment_manually(self, order_id: Optional[str]) -> PaymentResponse:
        """
        Ask iyzico for the state of an order's Checkout Form and settle it

        Used from the admin panel when a customer reports a payment the shop
        never saw. A failed or pending gateway result leaves the order as is.

        Returns:
            (http_status, body)
        """
        if not order_id:
            return 400, {'success': False, 'error': 'Sipariş ID gerekli'}

        order = self.order_repo.find_by_id(str(order_id))
        if not order:
            return 404, {'success': False, 'error': 'Sipariş bulunamadı'}

        if order.is_paid:
            return 200, {
                'success': True,
                'message': 'Ödeme zaten onaylanmış',
                'alreadyPaid': True,
                'order': {
                    'id': order.id,
                    'orderNumber': order.order_number,
                    'status': order.status,
                    'paymentStatus': 'paid',
                },
            }

        token = order.payment.get('token')
        if not isinstance(token, str) or not token:
            return 400, {
                'success': False,
                'error': 'Bu siparişte iyzico token bilgisi bulunamadı. Ödeme başlatılmamış olabilir.',
                'noToken': True,
            }

        try:
            result = await self.connector.retrieve_checkout_form({
                'locale': 'tr',
                'conversationId': order.id,
                'token': token,
            })
        except Exception as e:
            logger.error(f"Manual verification: iyzico API error for order {order.id}: {e}")
            return 500, {'success': False, 'error': f"iyzico API hatası: {e}", 'iyzicoError': True}
        result = result or {}

        logger.info(
            f"Manual verification for order {order.id}: status={result.get('status')}, "
            f"paymentStatus={result.get('paymentStatus')}, paymentId={result.get('paymentId')}"
        )
        payment_status = str(result.get('paymentStatus')).upper()

        if result.get('status') == 'success' and payment_status == 'SUCCESS':
            timestamp = now_iso()
            paid_payment = _compact({
                **{k: v for k, v in order.payment.items() if k != 'completionStartedAt'},
                'method': 'credit_card',
                'status': 'paid',
                'transactionId': result.get('paymentId'),
                'cardLast4': result.get('lastFourDigits'),
                'paidAt': timestamp,
                'cardType': result.get('cardType'),
                'cardAssociation': result.get('cardAssociation'),
                'installment': result.get('installment'),
                'paidPrice': result.get('paidPrice'),
            })
            timeline = order.timeline + [
                TimelineEntry(
                    status='confirmed', timestamp=timestamp,
                    note='Ödeme manuel olarak doğrulandı (admin)', automated=False
                ).to_dict()
            ]

            try:
                updated = self.order_repo.update_fields(order.id, {
                    'status': 'confirmed',
                    'payment': paid_payment,
                    'timeline': timeline,
                    'updated_at': _utcnow(),
                })
            except Exception as e:
                logger.error(f"Manual verification: failed to update order {order.id}: {e}")
                return 500, {'success': False, 'error': f"Sipariş güncellenemedi: {e}"}
            if not updated:
                return 500, {'success': False, 'error': 'Sipariş güncellenemedi'}

            self.send_confirmation_email(updated)

            return 200, {
                'success': True,
                'message': 'Ödeme başarıyla doğrulandı ve sipariş güncellendi',
                'verified': True,
                'iyzicoResult': _compact({
                    'paymentId': result.get('paymentId'),
                    'paidPrice': result.get('paidPrice'),
                    'cardLast4': result.get('lastFourDigits'),
                    'cardType': result.get('cardType'),
                }),
                'order': {
                    'id': order.id,
                    'orderNumber': order.order_number,
                    'newStatus': 'confirmed',
                    'paymentStatus': 'paid',
                },
            }

        if result.get('status') == 'failure' or payment_status == 'FAILURE':
            return 200, {
                'success': False,
                'paymentFailed': True,
                'message': "iyzico'da ödeme başarısız olarak görünüyor",
                'iyzicoResult': _compact({
                    'status': result.get('status'),
                    'paymentStatus': result.get('paymentStatus'),
                    'errorCode': result.get('errorCode'),
                    'errorMessage': result.get('errorMessage'),
                    'errorGroup': result.get('errorGroup'),
                }),
            }

        return 200, {
            'success': False,
            'pending': True,
            'message': 'Ödeme henüz tamamlanmamış veya durumu belirsiz',
            'iyzicoResult': _compact({
                'status': result.get('status'),
                'paymentStatus': result.get('paymentStatus'),
                'errorMessage': result.get('errorMessage'),
            }),
        }

    # ------------------------------------------------------------------
    # Failure bookkeeping
    # ------------------------------------------------------------------

    def mark_order_payment_failed(
        self,
        order_id: str,
        error_message: str,
        token: Optional[str] = None,
        payment_id: Optional[str] = None,
        error_code: Optional[str] = None,
        gateway_result: Optional[Dict[str, Any]] = None,
    ) -> Optional[Order]:
        """
        Move an order to payment_failed, keeping previous payment fields

        A paid order is left untouched.
        """
        order = self.order_repo.find_by_id(order_id)
        if not order:
            logger.warning(f"Cannot mark payment failed, order {order_id} not found")
            return None

        if order.is_paid:
            logger.info(f"Order {order_id} already paid, not marking payment as failed")
            return order

        previous = {k: v for k, v in order.payment.items() if k != 'completionStartedAt'}
        gateway = gateway_result if isinstance(gateway_result, dict) else {}

        payment = _compact({
            **previous,
            'method': previous.get('method') or 'credit_card',
            'status': 'failed',
            'token': token or previous.get('token'),
            'transactionId': payment_id or previous.get('transactionId') or gateway.get('paymentId'),
            'errorCode': error_code or gateway.get('errorCode'),
            'errorMessage': gateway.get('errorMessage') or error_message,
            'errorGroup': gateway.get('errorGroup'),
        })
        timeline = order.timeline + [
            TimelineEntry(status='payment_failed', note=error_message, automated=True).to_dict()
        ]

        return self.order_repo.update_fields(order_id, {
            'status': 'payment_failed',
            'payment': payment,
            'timeline': timeline,
            'updated_at': _utcnow(),
        })

    def _mark_failed_quietly(self, order_id: str, error_message: str, **kwargs) -> None:
        try:
            self.mark_order_payment_failed(order_id, error_message, **kwargs)
        except Exception as e:
            logger.error(f"Failed to persist payment failure on order {order_id}: {e}")

    def send_confirmation_email(self, order: Order) -> bool:
        """Order confirmation after a successful payment; never raises"""
        try:
            if not (order.customer_email or '').strip() or not order.order_number:
                logger.warning(f"Skipping confirmation email for order {order.id}: missing email or order number")
                return False
            sent = self.email_service.send_order_confirmation(order_email_data(order))
            if not sent:
                logger.warning(f"Confirmation email not sent for order #{order.order_number}")
            return sent
        except Exception as e:
            logger.error(f"Confirmation email failed for order {order.id}: {e}")
            return False
