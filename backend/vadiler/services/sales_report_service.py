"""
Sales Report Service
Per-product and per-district sales over paid orders, for the admin dashboard

Author: TM3
Date: 2025-12-04
"""
import logging
from typing import Any, Dict, List, Optional

from vadiler.domain.order import Order
from vadiler.domain.serialization import parse_iso, to_camel_case
from vadiler.repositories.order_repository import OrderRepository

logger = logging.getLogger(__name__)

# Refunded, cancelled and failed orders are left out of the report
REPORT_STATUSES = [
    'pending', 'pending_payment', 'confirmed', 'processing',
    'preparing', 'shipped', 'on_the_way', 'delivered',
]

# Columns exposed per paid order
PAID_ORDER_FIELDS = [
    'id', 'order_number', 'customer_name', 'customer_phone', 'total',
    'delivery', 'products', 'payment', 'status', 'created_at',
]


def _number(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value else default
    except (TypeError, ValueError):
        return default


def aggregate_sales(orders: List[Order]) -> Dict[str, Any]:
    """
    Build the report from already-filtered orders

    Returns:
        {'sales': [...], 'districtSales': [...], 'stats': {...}}
    """
    product_sales: Dict[str, Dict[str, Any]] = {}
    district_sales: Dict[str, Dict[str, Any]] = {}

    for order in orders:
        items = [item for item in order.products if isinstance(item, dict)]

        for item in items:
            product_id = str(item.get('productId') or item.get('id') or '')
            if not product_id:
                continue

            quantity = _number(item.get('quantity'), 1.0)
            price = _number(item.get('price'))

            entry = product_sales.get(product_id)
            if entry:
                entry['totalQuantity'] += quantity
                entry['totalRevenue'] += price * quantity
                entry['orderCount'] += 1
            else:
                product_sales[product_id] = {
                    'productId': product_id,
                    'productName': item.get('name') or f'Ürün #{product_id}',
                    'productImage': item.get('image') or '',
                    'productSlug': item.get('slug') or '',
                    'productCategory': item.get('category') or '',
                    'productPrice': price,
                    'totalQuantity': quantity,
                    'totalRevenue': price * quantity,
                    'orderCount': 1,
                }

        district = str(order.delivery.get('district') or 'Bilinmiyor')
        province = str(order.delivery.get('province') or 'İstanbul')
        product_count = sum(_number(item.get('quantity'), 1.0) for item in items)

        district_entry = district_sales.get(district)
        if district_entry:
            district_entry['orderCount'] += 1
            district_entry['revenue'] += order.total_amount
            district_entry['productCount'] += product_count
        else:
            district_sales[district] = {
                'district': district,
                'province': province,
                'orderCount': 1,
                'revenue': order.total_amount,
                'productCount': product_count,
            }

    sales = sorted(product_sales.values(), key=lambda p: p['totalQuantity'], reverse=True)
    districts = sorted(district_sales.values(), key=lambda d: d['revenue'], reverse=True)

    return {
        'sales': sales,
        'districtSales': districts,
        'stats': {
            'totalProducts': len(sales),
            'totalQuantity': sum(p['totalQuantity'] for p in sales),
            'totalRevenue': sum(order.total_amount for order in orders),
            'totalOrders': len(orders),
        },
    }


class SalesReportService:

    def __init__(self, order_repo: Optional[OrderRepository] = None):
        self.order_repo = order_repo or OrderRepository()

    def get_report(self, start: Optional[str] = None, end: Optional[str] = None) -> Dict[str, Any]:
        """Unparseable start/end values are ignored"""
        orders = self.order_repo.find_paid_for_report(
            statuses=REPORT_STATUSES,
            start=parse_iso(start),
            end=parse_iso(end),
        )

        paid_orders = []
        for order in orders:
            data = order.to_dict()
            paid_orders.append(to_camel_case({field: data.get(field) for field in PAID_ORDER_FIELDS}))

        report = aggregate_sales(orders)
        logger.info(f"Sales report: {len(orders)} paid orders, {len(report['sales'])} products")

        return {'paidOrders': paid_orders, **report}
