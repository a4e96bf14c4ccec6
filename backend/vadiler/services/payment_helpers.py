"""
Payment helpers: gateway response validation, 3DS status, basket/buyer builders

Author: TM3
Date: 2025-12-04
"""
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

FALLBACK_CLIENT_IP = '85.34.78.112'

# mdStatus -> (valid, message)
THREE_DS_STATUS = {
    '1': (True, '3DS authentication successful'),
    '2': (True, '3DS authentication successful (Card not enrolled)'),
    '3': (True, '3DS authentication successful (Bank not enrolled)'),
    '4': (True, '3DS authentication successful (Registration attempt)'),
    '0': (False, '3DS authentication failed'),
    '5': (False, '3DS authentication failed (Unknown error)'),
    '6': (False, '3DS authentication failed (Error)'),
    '7': (False, '3DS authentication failed (System error)'),
}


def validate_payment_response(response: Optional[Dict]) -> Tuple[bool, Optional[str]]:
    """Returns (is_valid, error)"""
    if not response:
        return False, 'No response from payment gateway'

    if response.get('status') != 'success':
        return False, response.get('errorMessage') or 'Payment failed'

    return True, None


def validate_3ds_status(md_status: Optional[str]) -> Tuple[bool, str]:
    """Returns (is_valid, message) for an iyzico mdStatus value"""
    return THREE_DS_STATUS.get(str(md_status) if md_status is not None else '', (False, 'Unknown 3DS status'))


def get_client_ip(headers: Mapping[str, str]) -> str:
    forwarded = headers.get('x-forwarded-for')
    if forwarded:
        return forwarded.split(',')[0].strip()

    real_ip = headers.get('x-real-ip')
    if real_ip:
        return real_ip

    return FALLBACK_CLIENT_IP


def format_price(value: Any) -> str:
    """iyzico prices are strings with two decimals"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = 0.0
    return f"{number:.2f}"


def to_number(value: Any, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number or number in (float('inf'), float('-inf')):
        return default
    return number


def normalize_phone(phone: Optional[str]) -> str:
    """
    Normalize a Turkish phone number to 10 digits (5XXXXXXXXX).

    '+90 532 123 45 67' -> '5321234567', '0532 123 45 67' -> '5321234567'
    """
    digits = re.sub(r'\D', '', phone or '')
    if digits.startswith('90') and len(digits) >= 12:
        digits = digits[2:]
    if digits.startswith('0') and len(digits) >= 11:
        digits = digits[1:]
    if len(digits) > 10:
        digits = digits[:10]
    return digits


def build_basket_items(products: Any) -> List[Dict[str, Any]]:
    """Basket items from the products stored on the order (server-trusted prices)"""
    if not isinstance(products, list):
        return []

    items = []
    for product in products:
        if not isinstance(product, dict):
            continue
        unit_price = to_number(product.get('price'))
        quantity = to_number(product.get('quantity')) or 1
        item = {
            'id': f"PROD_{product.get('id')}",
            'name': str(product.get('name') or 'Ürün')[:256],
            'category1': product.get('categoryName') or product.get('category') or 'Çiçekler',
        }
        tags = product.get('tags')
        if isinstance(tags, list) and tags and tags[0]:
            item['category2'] = tags[0]
        item['itemType'] = 'PHYSICAL'
        item['price'] = format_price(unit_price * quantity)
        items.append(item)
    return items


def registration_date(now: Optional[datetime] = None) -> str:
    """YYYY-MM-DD HH:MM:SS in UTC"""
    now = now or datetime.now(timezone.utc)
    return now.strftime('%Y-%m-%d %H:%M:%S')


def split_name(full_name: Optional[str]) -> Tuple[str, str]:
    """(first name, surname); surname falls back to first name, default 'Müşteri'"""
    parts = [p for p in (full_name or '').strip().split(' ') if p]
    first = parts[0] if parts else 'Müşteri'
    surname = ' '.join(parts[1:]) or first
    return first, surname


def build_gsm_number(phone: str) -> str:
    normalized = normalize_phone(phone)
    if len(normalized) == 10:
        return f"+90{normalized}"
    return '+90' + re.sub(r'\D', '', phone or '')


def build_checkout_form_request(
    order_id: str,
    total: float,
    customer: Dict[str, Any],
    delivery: Dict[str, Any],
    basket_items: List[Dict[str, Any]],
    callback_url: str,
    ip_address: str,
) -> Dict[str, Any]:
    """
    Checkout Form initialize request.

    Key order matters: the legacy signature is computed over the
    natural order of this dict.
    """
    delivery = delivery if isinstance(delivery, dict) else {}
    customer_name = customer.get('name') or ''
    first_name, surname = split_name(customer_name)
    city = delivery.get('province') or 'Istanbul'
    address = delivery.get('fullAddress') or 'Address not provided'
    price = format_price(total)

    return {
        'locale': 'tr',
        'conversationId': order_id,
        'price': price,
        'paidPrice': price,
        'currency': 'TRY',
        'basketId': f"BASKET_{order_id}",
        'paymentGroup': 'PRODUCT',
        'callbackUrl': callback_url,
        'enabledInstallments': [1],
        'buyer': {
            'id': customer.get('id') or f"GUEST_{order_id}",
            'name': first_name,
            'surname': surname,
            'gsmNumber': build_gsm_number(customer.get('phone') or ''),
            'email': customer.get('email'),
            'identityNumber': '11111111111',
            'registrationAddress': delivery.get('fullAddress') or 'Istanbul, Turkey',
            'registrationDate': registration_date(),
            'ip': ip_address,
            'city': city,
            'country': 'Turkey',
            'zipCode': '34000',
        },
        'shippingAddress': {
            'contactName': delivery.get('recipientName') or customer_name,
            'city': city,
            'country': 'Turkey',
            'address': address,
            'zipCode': '34000',
        },
        'billingAddress': {
            'contactName': customer_name,
            'city': city,
            'country': 'Turkey',
            'address': address,
            'zipCode': '34000',
        },
        'basketItems': basket_items,
    }
