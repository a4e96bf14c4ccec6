"""
Domain Layer - Business Entities

This layer contains Pydantic models representing business entities.
These models enforce type safety and validation across the application.

Author: TM3
Date: 2025-10-17
"""
from vadiler.domain.order import Order, TimelineEntry
from vadiler.domain.customer import Customer
from vadiler.domain.category import Category
from vadiler.domain.coupon import Coupon
from vadiler.domain.delivery_off_day import DeliveryOffDay

__all__ = ['Order', 'TimelineEntry', 'Customer', 'Category', 'Coupon', 'DeliveryOffDay']
