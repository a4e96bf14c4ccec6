"""
Integration tests for the payment endpoints

Services are replaced through dependency overrides; the routing,
redirect and signature logic runs for real.

Author: TM3
Date: 2025-12-04
"""
import json
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlsplit

import pytest

from vadiler.api.payment import get_checkout_service, get_completion_service, get_webhook_service
from vadiler.core.config import settings
from vadiler.services.webhook_service import compute_webhook_signatures

BASE = settings.APP_URL.rstrip('/')


def split_location(response):
    """(path, query dict) of a redirect Location"""
    parts = urlsplit(response.headers['location'])
    return parts.path, {key: values[0] for key, values in parse_qs(parts.query).items()}


# ============================================================================
# Initialize / complete
# ============================================================================

class TestInitialize:

    def test_passes_body_and_client_ip(self, api_client, override):
        # Arrange
        service = override(get_checkout_service, MagicMock())
        service.initialize_payment = AsyncMock(return_value=(200, {'success': True, 'token': 'tok_1'}))

        # Act
        response = api_client.post(
            '/api/payment/initialize',
            json={'orderId': 'order-1'},
            headers={'X-Forwarded-For': '85.1.2.3, 10.0.0.1'},
        )

        # Assert
        assert response.status_code == 200
        assert response.json() == {'success': True, 'token': 'tok_1'}
        service.initialize_payment.assert_awaited_once_with({'orderId': 'order-1'}, '85.1.2.3')

    def test_service_status_is_returned(self, api_client, override):
        service = override(get_checkout_service, MagicMock())
        service.initialize_payment = AsyncMock(return_value=(409, {'success': False, 'error': 'Order already paid'}))

        response = api_client.post('/api/payment/initialize', json={'orderId': 'order-1'})

        assert response.status_code == 409
        assert response.json()['error'] == 'Order already paid'

    def test_invalid_json_becomes_empty_body(self, api_client, override):
        service = override(get_checkout_service, MagicMock())
        service.initialize_payment = AsyncMock(return_value=(400, {'success': False, 'error': 'Missing orderId'}))

        response = api_client.post(
            '/api/payment/initialize', content=b'not json', headers={'Content-Type': 'application/json'}
        )

        assert response.status_code == 400
        assert service.initialize_payment.call_args[0][0] == {}

    def test_unexpected_error(self, api_client, override):
        service = override(get_checkout_service, MagicMock())
        service.initialize_payment = AsyncMock(side_effect=RuntimeError('boom'))

        response = api_client.post('/api/payment/initialize', json={'orderId': 'order-1'})

        assert response.status_code == 500
        assert response.json() == {'success': False, 'error': 'Internal server error', 'details': 'boom'}


class TestComplete:

    def test_post_uses_body_fields(self, api_client, override):
        service = override(get_completion_service, MagicMock())
        service.complete_payment = AsyncMock(return_value=(200, {'success': True, 'orderId': 'order-1'}))

        response = api_client.post(
            '/api/payment/complete',
            json={'token': 'tok_1', 'conversationId': 'order-1'},
        )

        assert response.status_code == 200
        assert response.json()['orderId'] == 'order-1'
        service.complete_payment.assert_awaited_once_with(
            payment_id=None, token='tok_1', conversation_id='order-1'
        )

    def test_get_enables_early_idempotency(self, api_client, override):
        service = override(get_completion_service, MagicMock())
        service.complete_payment = AsyncMock(return_value=(200, {'success': True, 'alreadyProcessed': True}))

        response = api_client.get('/api/payment/complete?paymentId=pay_1&conversationId=order-1')

        assert response.status_code == 200
        service.complete_payment.assert_awaited_once_with(
            payment_id='pay_1', token=None, conversation_id='order-1', early_idempotency=True
        )

    def test_get_unexpected_error(self, api_client, override):
        service = override(get_completion_service, MagicMock())
        service.complete_payment = AsyncMock(side_effect=RuntimeError('db down'))

        response = api_client.get('/api/payment/complete?token=tok_1')

        assert response.status_code == 500
        assert response.json() == {'success': False, 'error': 'Internal server error'}


# ============================================================================
# Callback
# ============================================================================

class TestCallback:

    def test_checkout_form_token_goes_to_complete(self, api_client):
        response = api_client.post(
            '/api/payment/callback',
            data={'token': 'tok_1', 'conversationId': 'order-1'},
            follow_redirects=False,
        )

        assert response.status_code == 307
        assert response.headers['location'].startswith(BASE)
        assert split_location(response) == ('/payment/complete', {'token': 'tok_1', 'conversationId': 'order-1'})

    def test_successful_3ds(self, api_client):
        response = api_client.post(
            '/api/payment/callback',
            data={'paymentId': 'pay_1', 'conversationId': 'order-1', 'mdStatus': '1', 'status': 'success'},
            follow_redirects=False,
        )

        assert split_location(response) == (
            '/payment/complete',
            {'paymentId': 'pay_1', 'conversationId': 'order-1', 'mdStatus': '1'},
        )

    def test_failed_3ds(self, api_client):
        response = api_client.post(
            '/api/payment/callback',
            data={'paymentId': 'pay_1', 'conversationId': 'order-1', 'mdStatus': '0'},
            follow_redirects=False,
        )

        assert split_location(response) == (
            '/payment/failure',
            {'error': '3DS authentication failed', 'conversationId': 'order-1'},
        )

    def test_missing_parameters(self, api_client):
        response = api_client.post('/api/payment/callback', data={'paymentId': 'pay_1'}, follow_redirects=False)

        assert split_location(response) == ('/payment/failure', {'error': 'Missing callback parameters'})

    def test_get_variant(self, api_client):
        response = api_client.get(
            '/api/payment/callback?paymentId=pay_1&conversationId=order-1&mdStatus=9',
            follow_redirects=False,
        )

        path, query = split_location(response)
        assert path == '/payment/failure'
        assert query['error'] == 'Unknown 3DS status'


# ============================================================================
# Webhook
# ============================================================================

WEBHOOK_PAYLOAD = {
    'iyziEventType': 'payment.success',
    'paymentId': 'pay_1',
    'paymentConversationId': 'order-1',
    'status': 'success',
}


class TestWebhook:

    @pytest.fixture
    def webhook_service(self, override):
        service = override(get_webhook_service, MagicMock())
        service.handle.return_value = (200, {'success': True})
        return service

    def test_valid_signature(self, api_client, webhook_service):
        signature, _ = compute_webhook_signatures(settings.IYZICO_SECRET_KEY, WEBHOOK_PAYLOAD)

        response = api_client.post(
            '/api/payment/webhook', json=WEBHOOK_PAYLOAD, headers={'x-iyz-signature-v3': signature}
        )

        assert response.status_code == 200
        assert response.json() == {'success': True}
        webhook_service.handle.assert_called_once_with(WEBHOOK_PAYLOAD)

    def test_invalid_signature(self, api_client, webhook_service):
        response = api_client.post(
            '/api/payment/webhook', json=WEBHOOK_PAYLOAD, headers={'x-iyz-signature-v3': 'deadbeef'}
        )

        assert response.status_code == 401
        assert response.json() == {'error': 'Invalid signature'}
        webhook_service.handle.assert_not_called()

    def test_non_ascii_signature_is_unauthorized(self, api_client, webhook_service):
        response = api_client.post(
            '/api/payment/webhook',
            json=WEBHOOK_PAYLOAD,
            headers={'x-iyz-signature-v3': 'ş'.encode('utf-8')},
        )

        assert response.status_code == 401
        webhook_service.handle.assert_not_called()

    def test_processing_error_still_returns_200(self, api_client, webhook_service):
        response = api_client.post(
            '/api/payment/webhook',
            content=json.dumps(['not', 'an', 'object']),
            headers={'Content-Type': 'application/json'},
        )

        assert response.status_code == 200
        assert response.json()['error'] == 'Webhook processing failed'


# ============================================================================
# Legacy /payment/complete
# ============================================================================

class TestLegacyComplete:

    def test_form_post_with_token(self, api_client):
        response = api_client.post('/payment/complete', data={'token': 'tok_1'}, follow_redirects=False)

        assert response.status_code == 303
        assert split_location(response) == ('/payment/complete-view', {'token': 'tok_1'})

    def test_json_post_with_payment_id(self, api_client):
        response = api_client.post('/payment/complete', json={'paymentId': 'pay_1'}, follow_redirects=False)

        assert split_location(response) == ('/payment/complete-view', {'token': 'pay_1'})

    def test_post_without_token(self, api_client):
        response = api_client.post('/payment/complete', data={}, follow_redirects=False)

        assert split_location(response) == ('/payment/complete-view', {'error': 'Ödeme bilgileri eksik'})

    def test_get_preserves_query(self, api_client):
        response = api_client.get('/payment/complete?token=tok_1&foo=bar', follow_redirects=False)

        assert response.status_code == 303
        assert split_location(response) == ('/payment/complete-view', {'token': 'tok_1', 'foo': 'bar'})
