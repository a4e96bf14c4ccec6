"""
Pytest fixtures and configuration for Vadiler Backend tests

This file provides shared fixtures that can be used across all test modules.

Author: TM3
Date: 2025-12-04
"""
import os
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

# Settings are read at import time; keep tests independent from a local .env
os.environ.setdefault("AUTH_SECRET", "test-auth-secret")
os.environ.setdefault("AUTH_SESSION_SECRET", "test-session-secret")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("IYZICO_API_KEY", "sandbox-api-key")
os.environ.setdefault("IYZICO_SECRET_KEY", "sandbox-secret-key")
os.environ.setdefault("APP_URL", "https://vadiler.test")


@pytest.fixture
def mock_db():
    """
    Provides a (connection, cursor) pair of MagicMocks

    Usage:
        mock_get_conn.return_value = mock_db[0]
    """
    mock_conn = MagicMock()
    mock_cursor = MagicMock()
    mock_conn.cursor.return_value = mock_cursor
    return mock_conn, mock_cursor


@pytest.fixture
def sample_order_row():
    """
    Provides an order row as returned by RealDictCursor
    """
    return {
        'id': 'f3a1c2d4-0000-4000-8000-000000000001',
        'order_number': 100123,
        'customer_id': 'cust_abc',
        'customer_name': 'Ayşe Yılmaz',
        'customer_email': 'ayse@example.com',
        'customer_phone': '5321234567',
        'is_guest': False,
        'products': [
            {'id': 7, 'name': 'Kırmızı Güller', 'price': 750.0, 'quantity': 2, 'image': '/img/gul.jpg'},
        ],
        'delivery': {
            'recipientName': 'Mehmet Yılmaz',
            'recipientPhone': '0532 765 43 21',
            'province': 'İstanbul',
            'district': 'Kadıköy',
            'fullAddress': 'Moda Cad. No:1',
            'deliveryDate': '2025-12-10',
            'deliveryTimeSlot': '11:00-17:00',
        },
        'payment': {'method': 'credit_card', 'status': 'pending'},
        'timeline': [{'status': 'pending_payment', 'timestamp': '2025-12-04T10:00:00+00:00'}],
        'message': None,
        'subtotal': Decimal('1500.00'),
        'discount': Decimal('0'),
        'delivery_fee': Decimal('0'),
        'total': Decimal('1500.00'),
        'status': 'pending_payment',
        'order_time_group': None,
        'notes': None,
        'tracking_url': None,
        'delivered_at': None,
        'created_at': datetime(2025, 12, 4, 10, 0, tzinfo=timezone.utc),
        'updated_at': None,
    }


@pytest.fixture
def sample_order(sample_order_row):
    """Provides the sample order as a domain model"""
    from vadiler.domain.order import Order
    return Order.from_row(sample_order_row)


@pytest.fixture
def sample_customer_row():
    return {
        'id': 'cust_abc',
        'email': 'ayse@example.com',
        'name': 'Ayşe Yılmaz',
        'phone': '5321234567',
        'password': 'secret123',
        'addresses': None,
        'orders': ['order-1'],
        'favorites': [],
        'tags': ['Yeni'],
        'notes': '',
        'total_spent': Decimal('250.50'),
        'order_count': 1,
        'last_order_date': None,
        'is_active': True,
        'created_at': datetime(2025, 11, 1, tzinfo=timezone.utc),
        'updated_at': None,
    }


# ============================================================================
# API fixtures
# ============================================================================

@pytest.fixture
def api_client():
    """
    TestClient on the real app; dependency overrides and rate limit
    buckets are cleared after each test
    """
    from fastapi.testclient import TestClient

    from vadiler.core.rate_limit import rate_limiter
    from vadiler.main import app

    rate_limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()
    rate_limiter.reset()


@pytest.fixture
def override():
    """Register a dependency override: override(provider, instance)"""
    from vadiler.main import app

    def _override(provider, instance):
        app.dependency_overrides[provider] = lambda: instance
        return instance

    return _override


@pytest.fixture
def as_admin(override):
    """Authenticate every request as an admin panel user"""
    from vadiler.core.auth import TokenUser, require_admin

    return override(require_admin, TokenUser(id='admin-1', email='admin@vadiler.com', role='admin'))
