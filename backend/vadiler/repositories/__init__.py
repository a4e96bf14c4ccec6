"""
Repository Layer - Data Access

This layer handles all database queries and returns domain models.
Repositories abstract away SQL details from business logic.

Author: TM3
Date: 2025-10-17
Updated: 2025-12-04 (storefront tables)
"""
from vadiler.repositories.order_repository import OrderRepository
from vadiler.repositories.customer_repository import CustomerRepository
from vadiler.repositories.product_repository import ProductRepository
from vadiler.repositories.category_repository import CategoryRepository
from vadiler.repositories.coupon_repository import CouponRepository
from vadiler.repositories.delivery_off_day_repository import DeliveryOffDayRepository
from vadiler.repositories.settings_repository import SettingsRepository

__all__ = [
    'OrderRepository',
    'CustomerRepository',
    'ProductRepository',
    'CategoryRepository',
    'CouponRepository',
    'DeliveryOffDayRepository',
    'SettingsRepository'
]
