"""
Order Service
Storefront order lifecycle: creation with server-trusted prices, admin
updates with status emails, tracking for guests, bank transfer
confirmation, refunds and restoring deleted orders

Author: TM3
Date: 2025-12-04
"""
import json
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from vadiler.domain.order import (
    Order,
    STATUS_EMAIL_STATUSES,
    TimelineEntry,
    status_email_already_sent,
    status_email_entry,
)
from vadiler.domain.serialization import now_iso, parse_iso, to_json_value
from vadiler.repositories.customer_repository import CustomerRepository
from vadiler.repositories.delivery_off_day_repository import DeliveryOffDayRepository
from vadiler.repositories.order_repository import OrderRepository
from vadiler.repositories.product_repository import ProductRepository
from vadiler.services.email_service import (
    EmailService,
    delivery_fields,
    get_email_service,
    order_email_data,
)
from vadiler.services.order_number_service import MAX_ORDER_NUMBER, MIN_ORDER_NUMBER
from vadiler.services.payment_helpers import normalize_phone

logger = logging.getLogger(__name__)

DELIVERY_OFF_DAY_ERROR = 'Yoğunluk sebebiyle bu tarihte teslimat yapılamamaktadır. Lütfen başka bir tarih seçin.'
MAX_DELIVERY_FEE = 1_000_000

# camelCase payload key -> orders column
UPDATE_FIELD_MAP = {
    'customerId': 'customer_id',
    'customerName': 'customer_name',
    'customerEmail': 'customer_email',
    'customerPhone': 'customer_phone',
    'isGuest': 'is_guest',
    'status': 'status',
    'products': 'products',
    'delivery': 'delivery',
    'payment': 'payment',
    'message': 'message',
    'subtotal': 'subtotal',
    'discount': 'discount',
    'deliveryFee': 'delivery_fee',
    'total': 'total',
    'notes': 'notes',
    'trackingUrl': 'tracking_url',
    'orderTimeGroup': 'order_time_group',
    'timeline': 'timeline',
}

# stored status -> status shown on the tracking page
TRACKING_STATUS_MAP = {
    'pending_payment': 'pending',
    'processing': 'preparing',
    'preparing': 'preparing',
    'on_the_way': 'on_the_way',
    'shipped': 'shipped',
    'delivered': 'delivered',
    'cancelled': 'cancelled',
    'canceled': 'cancelled',
    'confirmed': 'confirmed',
}

_BROWSER_PATTERNS = [
    ('Edge', re.compile(r'Edg/([\d.]+)')),
    ('Chrome', re.compile(r'Chrome/([\d.]+)')),
    ('Firefox', re.compile(r'Firefox/([\d.]+)')),
    ('Safari', re.compile(r'Version/([\d.]+).*Safari')),
    ('Opera', re.compile(r'OPR/([\d.]+)')),
]


class OrderError(Exception):
    """Order request rejected with a user-facing message"""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# ============================================================================
# Pure helpers
# ============================================================================

def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def clamp_money(value: Any, min_value: float = 0, max_value: float = math.inf) -> float:
    number = _finite(value)
    if number is None:
        number = 0.0
    return min(max_value, max(min_value, number))


def build_trusted_products(
    lines: Any,
    product_repo: ProductRepository
) -> Tuple[List[Dict[str, Any]], float]:
    """
    Rebuild order lines from the catalog so the client cannot set prices

    Returns:
        (products, subtotal)

    Raises:
        ValueError with the reason for the first invalid line
    """
    lines = lines if isinstance(lines, list) else []

    normalized = []
    for raw in lines:
        raw = raw if isinstance(raw, dict) else {}
        raw_id = raw.get('id') if raw.get('id') is not None else raw.get('productId')
        product_id = _finite(raw_id)
        quantity = _finite(raw.get('quantity') if raw.get('quantity') is not None else 0)
        normalized.append((product_id, quantity))

    lookup_ids = [int(pid) for pid, _ in normalized if pid is not None and pid > 0 and pid.is_integer()]
    catalog = product_repo.find_by_ids(lookup_ids)

    trusted = []
    for product_id, quantity in normalized:
        if product_id is None or product_id <= 0:
            raise ValueError('Invalid product id in order')
        if quantity is None or quantity <= 0:
            raise ValueError('Invalid quantity in order')

        product = catalog.get(int(product_id)) if product_id.is_integer() else None
        if not product:
            display_id = int(product_id) if product_id.is_integer() else product_id
            raise ValueError(f'Product not found in catalog: {display_id}')

        trusted.append({
            'id': product['id'],
            'name': product.get('name'),
            'slug': product.get('slug'),
            'image': product.get('image') or '',
            'price': _finite(product.get('price')) or 0.0,
            'quantity': int(quantity) if quantity.is_integer() else quantity,
            'category': product.get('category'),
            'categoryName': product.get('category_name'),
        })

    subtotal = sum(p['price'] * p['quantity'] for p in trusted)
    return trusted, subtotal


def detect_device_type(user_agent: str) -> str:
    ua = (user_agent or '').lower()
    if not ua:
        return 'desktop'
    if 'ipad' in ua or 'tablet' in ua:
        return 'tablet'
    if 'mobi' in ua or 'iphone' in ua or 'android' in ua:
        return 'mobile'
    return 'desktop'


def detect_browser(user_agent: str) -> Tuple[str, str]:
    """(browser, version); Edge is checked before Chrome"""
    for name, pattern in _BROWSER_PATTERNS:
        match = pattern.search(user_agent or '')
        if match:
            return name, match.group(1) or ''
    return 'Bilinmiyor', ''


def build_client_info(payment: Any, user_agent: str, platform: str) -> Dict[str, Any]:
    """payment.clientInfo merged with what the request headers tell us"""
    payment = payment if isinstance(payment, dict) else {}
    existing = payment.get('clientInfo') or payment.get('client_info') or {}
    existing = existing if isinstance(existing, dict) else {}
    browser, version = detect_browser(user_agent)

    info = {
        **existing,
        'userAgent': user_agent or None,
        'deviceType': detect_device_type(user_agent),
        'browser': browser,
        'browserVersion': version or None,
        'os': platform or None,
    }
    return {k: v for k, v in info.items() if v is not None}


def last_ten_digits(phone: str) -> str:
    digits = re.sub(r'\D', '', phone or '')
    return digits[-10:]


def mask_phone(phone: str) -> str:
    """'0532 123 45 67' -> '532 123 ** **'"""
    digits = re.sub(r'\D', '', phone or '')
    if len(digits) < 10:
        return phone or ''
    last10 = digits[-10:]
    return f"{last10[:3]} {last10[3:6]} ** **"


def map_tracking_status(status: Optional[str]) -> str:
    return TRACKING_STATUS_MAP.get((status or '').lower(), 'pending')


def _to_int(value: Any) -> Optional[int]:
    number = _finite(value)
    if number is None:
        return None
    return int(number)


# ============================================================================
# Service
# ============================================================================

class OrderService:

    def __init__(
        self,
        order_repo: Optional[OrderRepository] = None,
        customer_repo: Optional[CustomerRepository] = None,
        product_repo: Optional[ProductRepository] = None,
        off_day_repo: Optional[DeliveryOffDayRepository] = None,
        email_service: Optional[EmailService] = None,
    ):
        self.order_repo = order_repo or OrderRepository()
        self.customer_repo = customer_repo or CustomerRepository()
        self.product_repo = product_repo or ProductRepository()
        self.off_day_repo = off_day_repo or DeliveryOffDayRepository()
        self._email_service = email_service

    @property
    def email_service(self) -> EmailService:
        if self._email_service is None:
            self._email_service = get_email_service()
        return self._email_service

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_orders(
        self,
        customer_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> Dict[str, Any]:
        orders, total = self.order_repo.find_all(
            customer_id=customer_id, status=status, limit=limit, offset=offset
        )
        return {
            'orders': [order.to_api() for order in orders],
            'total': total,
            'offset': offset,
            'limit': limit,
        }

    def get_order(self, order_id: str) -> Order:
        order = self.order_repo.find_by_id(order_id)
        if not order:
            raise OrderError('Sipariş bulunamadı.', 404)
        return order

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def check_delivery_date(self, delivery_date: Any) -> None:
        """Reject unparseable dates, Sundays and active off days"""
        if not delivery_date:
            return

        parsed = parse_iso(delivery_date)
        if parsed is None:
            raise OrderError('Geçersiz teslimat tarihi', 400)

        parsed = parsed.astimezone(timezone.utc)
        if parsed.weekday() == 6:
            raise OrderError(DELIVERY_OFF_DAY_ERROR, 400)

        try:
            is_off_day = self.off_day_repo.active_exists_on(parsed.date().isoformat())
        except Exception as e:
            logger.error(f"Error checking delivery off days: {e}")
            raise OrderError('Teslimat takvimi doğrulanamadı', 500)

        if is_off_day:
            raise OrderError(DELIVERY_OFF_DAY_ERROR, 400)

    def create_order(self, data: Dict[str, Any], headers: Mapping[str, str]) -> Order:
        """
        Create an order from the checkout payload

        Raises:
            OrderError on validation failures
        """
        if not data.get('products') or not data.get('delivery'):
            raise OrderError('Products and delivery info are required', 400)

        delivery = data['delivery'] if isinstance(data['delivery'], dict) else {}
        customer_id = data.get('customer_id') or None

        customer_name = str(data.get('customer_name') or '')
        customer_email = str(data.get('customer_email') or '')
        customer_phone = str(data.get('customer_phone') or '')

        if (not customer_name or not customer_email or not customer_phone) and customer_id:
            customer = self.customer_repo.find_by_id(customer_id)
            if customer:
                customer_name = customer_name or customer.name or ''
                customer_email = customer_email or customer.email or ''
                customer_phone = customer_phone or customer.phone or ''

        customer_name = customer_name or delivery.get('recipientName') or ''
        customer_phone = customer_phone or delivery.get('recipientPhone') or ''
        if customer_phone:
            customer_phone = normalize_phone(customer_phone)

        is_guest = data['is_guest'] if isinstance(data.get('is_guest'), bool) else customer_id is None

        initial_status = data.get('status') or 'pending'
        timeline = data.get('timeline')
        if not isinstance(timeline, list) or not timeline:
            note = 'Ödeme bekleniyor' if initial_status == 'pending_payment' else 'Sipariş alındı'
            timeline = [TimelineEntry(status=initial_status, note=note).to_dict()]

        try:
            products, subtotal = build_trusted_products(data.get('products'), self.product_repo)
        except ValueError as e:
            raise OrderError(str(e), 400)

        delivery_fee = clamp_money(data.get('delivery_fee', 0), 0, MAX_DELIVERY_FEE)
        discount = clamp_money(data.get('discount', 0), 0, subtotal + delivery_fee)
        total = subtotal + delivery_fee - discount

        self.check_delivery_date(delivery.get('deliveryDate'))

        payment = data.get('payment') if isinstance(data.get('payment'), dict) else {}
        payment = {
            **payment,
            'clientInfo': build_client_info(
                payment,
                headers.get('user-agent', ''),
                headers.get('sec-ch-ua-platform', ''),
            ),
        }

        order = self.order_repo.create({
            'customer_id': customer_id,
            'customer_name': customer_name,
            'customer_email': customer_email,
            'customer_phone': customer_phone,
            'is_guest': is_guest,
            'products': products,
            'delivery': data['delivery'],
            'payment': payment,
            'message': data.get('message') or None,
            'subtotal': subtotal,
            'discount': discount,
            'delivery_fee': delivery_fee,
            'total': total,
            'status': initial_status,
            'order_time_group': data.get('order_time_group') or None,
            'timeline': timeline,
            'notes': data.get('notes') or '',
            'tracking_url': data.get('tracking_url') or '',
        })
        logger.info(f"Order created: {order.id} (#{order.order_number}, status={order.status})")

        if payment.get('method') == 'bank_transfer' and customer_email and order.order_number:
            self._send_bank_transfer_email(order)

        if customer_id and not is_guest:
            try:
                self.customer_repo.record_order(customer_id, order.id, total)
            except Exception as e:
                logger.warning(f"Failed to update customer stats for {customer_id}: {e}")

        return order

    def _send_bank_transfer_email(self, order: Order) -> None:
        try:
            sent = self.email_service.send_bank_transfer_confirmation(
                order_email_data(order, payment_method='Havale/EFT')
            )
            if sent:
                logger.info(f"Bank transfer email sent for order #{order.order_number}")
            else:
                logger.warning(f"Bank transfer email failed to send for order #{order.order_number}")
        except Exception as e:
            logger.error(f"Error sending bank transfer email for order #{order.order_number}: {e}")

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    def update_order(self, data: Dict[str, Any]) -> Order:
        """Admin update with camelCase payload; sends one status email per status"""
        order_id = data.get('id')
        if not order_id:
            raise OrderError('Order ID is required', 400)
        order_id = str(order_id)

        current = self.order_repo.find_by_id(order_id)
        old_status = (current.status if current else '').lower()
        next_status = str(data.get('status') or '').lower()
        status_changed = bool(next_status and old_status and next_status != old_status)

        fields = {column: data[key] for key, column in UPDATE_FIELD_MAP.items() if key in data}
        if data.get('status') == 'delivered' and not data.get('deliveredAt'):
            fields['delivered_at'] = datetime.now(timezone.utc)
        fields['updated_at'] = datetime.now(timezone.utc)

        updated = self.order_repo.update_fields(order_id, fields)
        if not updated:
            raise OrderError('Order not found', 404)

        if status_changed and next_status in STATUS_EMAIL_STATUSES:
            updated = self.notify_status_change(updated, next_status)

        return updated

    def notify_status_change(self, order: Order, status: str) -> Order:
        """Send the status email once; the timeline records that it was sent"""
        try:
            email = (order.customer_email or '').strip()
            name = (order.customer_name or '').strip() or 'Değerli Müşterimiz'
            order_number = str(order.order_number or '')

            if not email or not order_number or status_email_already_sent(order.timeline, status):
                return order

            sent = self.email_service.send_order_status_update(
                customer_email=email,
                customer_name=name,
                order_number=order_number,
                status=status,
                delivery=delivery_fields(order.delivery),
            )
            if not sent:
                return order

            marked = self.order_repo.update_fields(
                order.id,
                {'timeline': order.timeline + [status_email_entry(status)]},
                expected_status=order.status,
            )
            return marked or order
        except Exception as e:
            logger.error(f"Order status email error for {order.id}: {e}")
            return order

    def patch_status(self, order_id: str, status: Optional[str]) -> Order:
        status = str(status or '')
        if not status:
            raise OrderError('Status is required', 400)

        existing = self.order_repo.find_by_id(order_id)
        if not existing:
            raise OrderError('Sipariş bulunamadı.', 404)

        timestamp = now_iso()
        fields = {
            'status': status,
            'updated_at': datetime.now(timezone.utc),
            'timeline': existing.timeline + [
                TimelineEntry(status=status, timestamp=timestamp, note='Durum güncellendi', automated=False).to_dict()
            ],
        }
        if status == 'delivered':
            fields['delivered_at'] = datetime.now(timezone.utc)

        updated = self.order_repo.update_fields(order_id, fields)
        if not updated:
            raise OrderError('Sipariş bulunamadı.', 404)
        return updated

    def delete_order(self, order_id: Optional[str]) -> bool:
        """Delete after copying the row into deleted_orders; returns backed_up"""
        if not order_id:
            raise OrderError('Order ID is required', 400)

        deleted, backed_up = self.order_repo.delete_with_backup(str(order_id))
        if not deleted:
            raise OrderError('Order not found', 404)

        logger.info(f"Order {order_id} deleted (backed up: {backed_up})")
        return backed_up

    def list_deleted_orders(self) -> List[Dict[str, Any]]:
        return [to_json_value(row) for row in self.order_repo.find_deleted()]

    def restore_order(self, deleted_order_id: Optional[str]) -> Order:
        """Put a deleted_orders backup back into orders"""
        if not deleted_order_id:
            raise OrderError('Deleted order ID is required', 400)

        backup = self.order_repo.find_deleted_by_id(str(deleted_order_id))
        if not backup or backup.get('is_restored'):
            raise OrderError('Deleted order not found', 404)

        order_data = backup.get('order_data')
        if isinstance(order_data, str):
            try:
                order_data = json.loads(order_data)
            except ValueError:
                order_data = None
        if not isinstance(order_data, dict) or not order_data:
            raise OrderError('Order data is missing', 400)

        if order_data.get('id') and self.order_repo.find_by_id(str(order_data['id'])):
            raise OrderError('Order already exists', 409)

        order = self.order_repo.restore_deleted(str(deleted_order_id), order_data)
        logger.info(f"Order {order.id} (#{order.order_number}) restored from backup {deleted_order_id}")
        return order

    # ------------------------------------------------------------------
    # Admin payment actions
    # ------------------------------------------------------------------

    def confirm_bank_payment(self, order_id: Optional[str]) -> Order:
        """Mark a bank transfer as received and send the order confirmation"""
        if not order_id:
            raise OrderError('Order ID is required', 400)

        order = self.order_repo.find_by_id(str(order_id))
        if not order:
            raise OrderError('Order not found', 404)
        if order.is_paid:
            raise OrderError('Payment already confirmed', 400)

        timestamp = now_iso()
        updated = self.order_repo.update_fields(order.id, {
            'status': 'confirmed',
            'payment': {**order.payment, 'status': 'paid', 'paidAt': timestamp},
            'timeline': order.timeline + [
                TimelineEntry(
                    status='confirmed', timestamp=timestamp, note='Havale ödemesi admin tarafından onaylandı'
                ).to_dict()
            ],
            'updated_at': datetime.now(timezone.utc),
        })
        if not updated:
            raise OrderError('Failed to update order', 500)

        logger.info(f"Bank transfer confirmed for order #{updated.order_number}")
        try:
            sent = self.email_service.send_order_confirmation(
                order_email_data(updated, payment_method='Havale/EFT (Onaylandı)')
            )
            if not sent:
                logger.warning(f"Confirmation email not sent for bank transfer order #{updated.order_number}")
        except Exception as e:
            logger.error(f"Failed to send confirmation email for order #{updated.order_number}: {e}")

        return updated

    def refund_order(self, data: Dict[str, Any]) -> Order:
        """
        Record a refund made outside the gateway (bank transfer back, iyzico
        panel) and notify the customer
        """
        order_id = data.get('orderId')
        if not order_id:
            raise OrderError('Sipariş ID gerekli.', 400)

        order = self.order_repo.find_by_id(str(order_id))
        if not order:
            raise OrderError('Sipariş bulunamadı.', 404)

        amount = _finite(data.get('amount')) if not isinstance(data.get('amount'), bool) else None
        if amount is None:
            amount = order.total_amount
        if amount < 0 or amount > order.total_amount:
            raise OrderError('Geçersiz iade tutarı.', 400)

        timestamp = now_iso()
        refund = {
            'status': 'completed',
            'amount': amount,
            'reason': str(data.get('reason') or '') or 'Müşteri talebi',
            'notes': str(data.get('notes') or ''),
            'processedAt': timestamp,
            'processedBy': 'admin',
        }
        note = f"İade işlemi tamamlandı. Tutar: ₺{amount:,.2f}. Sebep: {refund['reason']}"

        updated = self.order_repo.update_fields(order.id, {
            'status': 'refunded',
            'refund': refund,
            'timeline': order.timeline + [
                TimelineEntry(status='refunded', timestamp=timestamp, note=note, automated=False).to_dict()
            ],
            'updated_at': datetime.now(timezone.utc),
        })
        if not updated:
            raise OrderError('İade işlemi başarısız.', 500)

        logger.info(f"Order #{updated.order_number} refunded ({amount})")
        email = (updated.customer_email or '').strip()
        if email:
            try:
                self.email_service.send_order_status_update(
                    customer_email=email,
                    customer_name=(updated.customer_name or '').strip() or 'Değerli Müşterimiz',
                    order_number=str(updated.order_number or ''),
                    status='refunded',
                    delivery=delivery_fields(updated.delivery),
                    refund_amount=amount,
                    refund_reason=refund['reason'],
                )
            except Exception as e:
                logger.error(f"Failed to send refund email for order #{updated.order_number}: {e}")

        return updated

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def track_order(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Public order lookup verified by email or phone"""
        order_number = _finite(data.get('orderNumber'))
        verification_type = data.get('verificationType')
        value = data.get('verificationValue')
        value = str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else ''

        if order_number is None:
            raise OrderError('Sipariş numarası gereklidir.', 400)
        if order_number < MIN_ORDER_NUMBER or order_number > MAX_ORDER_NUMBER:
            raise OrderError('Geçersiz sipariş numarası formatı.', 400)
        if verification_type not in ('email', 'phone'):
            raise OrderError('Doğrulama tipi geçersiz.', 400)
        if not value.strip():
            raise OrderError('Doğrulama bilgisi gereklidir.', 400)

        order = self.order_repo.find_by_order_number(int(order_number))
        if not order:
            raise OrderError('Sipariş bulunamadı.', 404)

        delivery = order.delivery
        if verification_type == 'email':
            order_email = (order.customer_email or '').lower().strip()
            verified = bool(order_email) and order_email == value.lower().strip()
        else:
            entered = last_ten_digits(value)
            order_phone = last_ten_digits(order.customer_phone or '')
            recipient_phone = last_ten_digits(str(delivery.get('recipientPhone') or ''))
            verified = (bool(recipient_phone) and recipient_phone == entered) or \
                (bool(order_phone) and order_phone == entered)

        if not verified:
            raise OrderError('Doğrulama bilgileri sipariş ile eşleşmiyor.', 403)

        message = order.message if isinstance(order.message, dict) else {}
        created_at = order.created_at.isoformat() if order.created_at else ''
        items = [
            {
                'productId': _to_int(p.get('productId') if p.get('productId') is not None else p.get('id')) or 0,
                'productName': str(p.get('name') or ''),
                'quantity': _finite(p.get('quantity')) or 0,
                'price': _finite(p.get('price')) or 0,
                'image': str(p.get('image') or ''),
            }
            for p in order.products if isinstance(p, dict)
        ]

        return {
            'id': order.id,
            'orderNumber': order.order_number,
            'status': map_tracking_status(order.status),
            'createdAt': created_at,
            'deliveryDate': delivery.get('deliveryDate') or created_at,
            'deliveryTimeSlot': delivery.get('deliveryTimeSlot') or '11:00-17:00',
            'recipientName': delivery.get('recipientName') or 'Alıcı',
            'recipientPhone': mask_phone(str(delivery.get('recipientPhone') or '')),
            'deliveryAddress': delivery.get('fullAddress') or delivery.get('recipientAddress') or '',
            'district': delivery.get('district') or '',
            'items': items,
            'subtotal': float(order.subtotal or 0),
            'deliveryFee': float(order.delivery_fee or 0),
            'discount': float(order.discount or 0),
            'total': order.total_amount,
            'paymentMethod': order.payment.get('method') or 'credit_card',
            'cardMessage': message.get('content') or order.notes or '',
            'senderName': message.get('senderName') or '',
        }
