"""
Unit tests for PaymentCompletionService

The iyzico connector is an AsyncMock; the order repository is a MagicMock.

Author: TM3
Date: 2025-12-04
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from vadiler.services.payment_completion_service import (
    AMOUNT_MISMATCH_NOTE,
    ORDER_NOT_FOUND_MESSAGE,
    TOKEN_EXPIRED_MESSAGE,
    PaymentCompletionService,
    get_token_remaining_minutes,
    is_token_expired,
    map_iyzico_error_to_turkish,
)

NOW = datetime(2025, 12, 4, 12, 0, tzinfo=timezone.utc)

SUCCESS_RESULT = {
    'status': 'success',
    'paymentStatus': 'SUCCESS',
    'paymentId': 'pay_123',
    'paidPrice': 1500.0,
    'lastFourDigits': '0008',
    'cardType': 'CREDIT_CARD',
    'cardAssociation': 'MASTER_CARD',
    'installment': 1,
}


def iso_minutes_ago(minutes):
    return (datetime.now(timezone.utc) - timedelta(minutes=minutes)).isoformat()


@pytest.fixture
def service():
    return PaymentCompletionService(
        order_repo=MagicMock(),
        connector=AsyncMock(),
        email_service=MagicMock(),
    )


def with_payment(order, **payment):
    return order.model_copy(update={'payment': {**order.payment, **payment}})


class TestHelpers:

    @pytest.mark.parametrize("code,message,expected", [
        (None, None, 'Ödeme işlemi başarısız oldu. Lütfen tekrar deneyin.'),
        ('TOKEN_ERR', 'token expired', TOKEN_EXPIRED_MESSAGE),
        ('10051', 'Card declined by bank', 'Kartınız reddedildi. Lütfen bankanızla iletişime geçin veya başka bir kart deneyin.'),
        ('INSUFFICIENT_FUNDS', None, 'Kart bakiyeniz yetersiz. Lütfen başka bir kart deneyin.'),
        (None, 'Kart sahibi bilgisi hatalı girildi', 'Kart sahibi bilgisi hatalı girildi'),
        ('999', 'unknown problem', 'Ödeme işlemi başarısız oldu. Lütfen tekrar deneyin veya başka bir kart kullanın.'),
    ])
    def test_map_iyzico_error_to_turkish(self, code, message, expected):
        assert map_iyzico_error_to_turkish(code, message) == expected

    def test_token_expiry(self):
        assert is_token_expired(None, NOW) is False
        assert is_token_expired((NOW - timedelta(minutes=24)).isoformat(), NOW) is False
        assert is_token_expired((NOW - timedelta(minutes=26)).isoformat(), NOW) is True
        assert get_token_remaining_minutes((NOW - timedelta(minutes=10)).isoformat(), NOW) == 15
        assert get_token_remaining_minutes((NOW - timedelta(minutes=40)).isoformat(), NOW) == 0
        assert get_token_remaining_minutes(None, NOW) == 25


class TestBrowserFlow:

    @pytest.mark.asyncio
    async def test_missing_identifiers(self, service):
        status, body = await service.complete_payment()

        assert status == 400
        assert body == {'success': False, 'error': 'Missing paymentId or token'}

    @pytest.mark.asyncio
    async def test_unknown_token(self, service):
        service.order_repo.find_by_payment_token.return_value = None

        status, body = await service.complete_payment(token='tok')

        assert status == 404
        assert body['error'] == ORDER_NOT_FOUND_MESSAGE

    @pytest.mark.asyncio
    async def test_expired_token(self, service, sample_order):
        service.order_repo.find_by_payment_token.return_value = with_payment(
            sample_order, token='tok', tokenCreatedAt=iso_minutes_ago(40)
        )

        status, body = await service.complete_payment(token='tok')

        assert status == 400
        assert body['error'] == TOKEN_EXPIRED_MESSAGE
        service.connector.retrieve_checkout_form.assert_not_called()

    @pytest.mark.asyncio
    async def test_early_idempotency_skips_gateway(self, service, sample_order):
        """A refresh on an already paid order returns the stored result"""
        paid = with_payment(sample_order, status='paid', transactionId='pay_1', cardLast4='0008',
                            tokenCreatedAt=iso_minutes_ago(90))
        service.order_repo.find_by_payment_token.return_value = paid

        status, body = await service.complete_payment(token='tok', early_idempotency=True)

        assert status == 200
        assert body['paymentId'] == 'pay_1'
        assert body['message'] == 'Ödeme zaten tamamlandı'
        service.connector.retrieve_checkout_form.assert_not_called()

    @pytest.mark.asyncio
    async def test_successful_checkout_form(self, service, sample_order):
        # Arrange
        service.order_repo.find_by_payment_token.return_value = with_payment(
            sample_order, token='tok', tokenCreatedAt=iso_minutes_ago(5)
        )
        service.order_repo.find_by_id.return_value = sample_order
        service.order_repo.update_fields.return_value = sample_order
        service.connector.retrieve_checkout_form.return_value = dict(SUCCESS_RESULT)
        service.email_service.send_order_confirmation.return_value = True

        # Act
        status, body = await service.complete_payment(token='tok')

        # Assert
        assert status == 200
        assert body['success'] is True
        assert body['paymentId'] == 'pay_123'
        assert body['cardLast4'] == '0008'

        service.connector.retrieve_checkout_form.assert_awaited_once_with({
            'locale': 'tr', 'conversationId': sample_order.id, 'token': 'tok',
        })
        order_id, fields = service.order_repo.update_fields.call_args[0]
        assert order_id == sample_order.id
        assert fields['status'] == 'confirmed'
        assert fields['payment']['status'] == 'paid'
        assert fields['payment']['transactionId'] == 'pay_123'
        assert fields['timeline'][-1]['note'] == 'Ödeme onaylandı'
        assert fields['timeline'][-1]['automated'] is True
        service.email_service.send_order_confirmation.assert_called_once()

    @pytest.mark.asyncio
    async def test_three_ds_completion(self, service, sample_order):
        service.order_repo.find_by_id.return_value = sample_order
        service.order_repo.update_fields.return_value = sample_order
        service.connector.complete_three_ds.return_value = dict(SUCCESS_RESULT)

        status, body = await service.complete_payment(payment_id='pay_123', conversation_id=sample_order.id)

        assert status == 200
        service.connector.complete_three_ds.assert_awaited_once_with('pay_123', sample_order.id)

    @pytest.mark.asyncio
    async def test_gateway_failure_marks_order(self, service, sample_order):
        # Arrange
        service.order_repo.find_by_id.return_value = sample_order
        service.connector.retrieve_checkout_form.return_value = {
            'status': 'success', 'paymentStatus': 'FAILURE',
            'errorCode': '10051', 'errorMessage': 'Kart limiti yetersiz, yetersiz bakiye',
        }

        # Act
        status, body = await service.complete_payment(token='tok', conversation_id=sample_order.id)

        # Assert
        assert status == 400
        assert body['success'] is False
        assert body['errorCode'] == '10051'
        fields = service.order_repo.update_fields.call_args[0][1]
        assert fields['status'] == 'payment_failed'
        assert fields['payment']['status'] == 'failed'
        assert fields['payment']['errorCode'] == '10051'

    @pytest.mark.asyncio
    async def test_failure_never_downgrades_paid_order(self, service, sample_order):
        service.order_repo.find_by_id.return_value = with_payment(sample_order, status='paid')
        service.connector.retrieve_checkout_form.return_value = {'status': 'failure', 'errorMessage': 'oops'}

        status, _ = await service.complete_payment(token='tok', conversation_id=sample_order.id)

        assert status == 400
        service.order_repo.update_fields.assert_not_called()

    @pytest.mark.asyncio
    async def test_already_paid_after_gateway(self, service, sample_order):
        service.order_repo.find_by_id.return_value = with_payment(
            sample_order, status='paid', transactionId='pay_1', paidPrice=1500
        )
        service.connector.retrieve_checkout_form.return_value = dict(SUCCESS_RESULT)

        status, body = await service.complete_payment(token='tok', conversation_id=sample_order.id)

        assert status == 200
        assert body['message'] == 'Payment already completed'
        assert body['paymentId'] == 'pay_1'
        service.order_repo.update_fields.assert_not_called()

    @pytest.mark.asyncio
    async def test_amount_mismatch(self, service, sample_order):
        service.order_repo.find_by_id.return_value = sample_order
        service.connector.retrieve_checkout_form.return_value = {**SUCCESS_RESULT, 'paidPrice': '1.00'}

        status, body = await service.complete_payment(token='tok', conversation_id=sample_order.id)

        assert status == 400
        assert body['paid'] == 1.0
        assert body['expected'] == 1500.0
        fields = service.order_repo.update_fields.call_args[0][1]
        assert fields['timeline'][-1]['note'] == AMOUNT_MISMATCH_NOTE

    @pytest.mark.asyncio
    async def test_update_failure_is_server_error(self, service, sample_order):
        service.order_repo.find_by_id.return_value = sample_order
        service.order_repo.update_fields.return_value = None
        service.connector.retrieve_checkout_form.return_value = dict(SUCCESS_RESULT)

        status, body = await service.complete_payment(token='tok', conversation_id=sample_order.id)

        assert status == 500
        assert body['error'] == 'Failed to update order'
        service.email_service.send_order_confirmation.assert_not_called()


class TestServerSideFlow:

    @pytest.mark.asyncio
    async def test_order_not_found(self, service):
        service.order_repo.find_by_payment_token.return_value = None

        result = await service.complete_payment_server_side('tok')

        assert result.success is False
        assert result.error_code == 'ORDER_NOT_FOUND'

    @pytest.mark.asyncio
    async def test_already_paid(self, service, sample_order):
        service.order_repo.find_by_id.return_value = with_payment(sample_order, status='paid', transactionId='pay_1')

        result = await service.complete_payment_server_side('tok', sample_order.id)

        assert result.success is True
        assert result.already_completed is True
        assert result.to_api()['paymentId'] == 'pay_1'
        service.connector.retrieve_checkout_form.assert_not_called()

    @pytest.mark.asyncio
    async def test_token_expired(self, service, sample_order):
        service.order_repo.find_by_id.return_value = with_payment(sample_order, tokenCreatedAt=iso_minutes_ago(30))

        result = await service.complete_payment_server_side('tok', sample_order.id)

        assert result.error_code == 'TOKEN_EXPIRED'

    @pytest.mark.asyncio
    async def test_success_merges_payment_and_drops_lock(self, service, sample_order):
        # Arrange
        order = with_payment(sample_order, token='tok', tokenCreatedAt=iso_minutes_ago(5), basketId='B1')
        service.order_repo.find_by_id.return_value = order
        service.order_repo.update_fields.return_value = order
        service.connector.retrieve_checkout_form.return_value = dict(SUCCESS_RESULT)

        # Act
        result = await service.complete_payment_server_side('tok', order.id)

        # Assert
        assert result.success is True
        assert result.payment_id == 'pay_123'

        lock_fields = service.order_repo.update_fields.call_args_list[0][0][1]
        assert 'completionStartedAt' in lock_fields['payment']

        final_fields = service.order_repo.update_fields.call_args_list[1][0][1]
        assert final_fields['status'] == 'confirmed'
        assert final_fields['payment']['basketId'] == 'B1'
        assert final_fields['payment']['status'] == 'paid'
        assert 'completionStartedAt' not in final_fields['payment']

    @pytest.mark.asyncio
    async def test_recent_lock_waits_then_returns_paid(self, service, sample_order):
        """A concurrent completion in progress is awaited instead of calling iyzico twice"""
        locked = with_payment(sample_order, completionStartedAt=iso_minutes_ago(0))
        paid = with_payment(sample_order, status='paid', transactionId='pay_9')
        service.order_repo.find_by_id.side_effect = [locked, paid]

        with patch('vadiler.services.payment_completion_service.asyncio.sleep', new=AsyncMock()) as mock_sleep:
            result = await service.complete_payment_server_side('tok', sample_order.id)

        mock_sleep.assert_awaited_once_with(PaymentCompletionService.LOCK_WAIT_SECONDS)
        assert result.already_completed is True
        assert result.payment_id == 'pay_9'
        service.connector.retrieve_checkout_form.assert_not_called()

    @pytest.mark.asyncio
    async def test_gateway_failure_marks_failed(self, service, sample_order):
        service.order_repo.find_by_id.return_value = sample_order
        service.connector.retrieve_checkout_form.return_value = {
            'status': 'success', 'paymentStatus': 'FAILURE', 'errorCode': '10005',
        }

        result = await service.complete_payment_server_side('tok', sample_order.id)

        assert result.success is False
        assert result.error_code == '10005'
        final_fields = service.order_repo.update_fields.call_args_list[-1][0][1]
        assert final_fields['status'] == 'payment_failed'
        assert final_fields['timeline'][-1]['status'] == 'payment_failed'

    @pytest.mark.asyncio
    async def test_gateway_exception(self, service, sample_order):
        service.order_repo.find_by_id.return_value = sample_order
        service.connector.retrieve_checkout_form.side_effect = Exception("connection reset")

        result = await service.complete_payment_server_side('tok', sample_order.id)

        assert result.error_code == 'IYZICO_API_ERROR'
        assert result.error == 'Banka bağlantısı zaman aşımına uğradı. Lütfen tekrar deneyin.'

    @pytest.mark.asyncio
    async def test_unexpected_error(self, service):
        service.order_repo.find_by_id.side_effect = Exception("db down")

        result = await service.complete_payment_server_side('tok', 'order-1')

        assert result.error_code == 'UNEXPECTED_ERROR'


class TestConfirmationEmail:

    def test_skipped_without_email(self, service, sample_order):
        order = sample_order.model_copy(update={'customer_email': ''})
        assert service.send_confirmation_email(order) is False
        service.email_service.send_order_confirmation.assert_not_called()

    def test_errors_are_swallowed(self, service, sample_order):
        service.email_service.send_order_confirmation.side_effect = Exception("smtp")
        assert service.send_confirmation_email(sample_order) is False


class TestManualVerification:

    @pytest.mark.asyncio
    async def test_settles_successful_payment(self, service, sample_order):
        # Arrange
        order = with_payment(sample_order, token='tok_1')
        service.order_repo.find_by_id.return_value = order
        service.order_repo.update_fields.return_value = order
        service.connector.retrieve_checkout_form.return_value = SUCCESS_RESULT

        # Act
        status, body = await service.verify_payment_manually(order.id)

        # Assert
        assert status == 200
        assert body['verified'] is True
        assert body['iyzicoResult']['cardLast4'] == '0008'
        assert body['order']['newStatus'] == 'confirmed'

        fields = service.order_repo.update_fields.call_args[0][1]
        assert fields['status'] == 'confirmed'
        assert fields['payment']['status'] == 'paid'
        assert fields['payment']['transactionId'] == 'pay_123'
        assert fields['timeline'][-1]['note'] == 'Ödeme manuel olarak doğrulandı (admin)'
        service.connector.retrieve_checkout_form.assert_awaited_once_with(
            {'locale': 'tr', 'conversationId': order.id, 'token': 'tok_1'}
        )
        service.email_service.send_order_confirmation.assert_called_once()

    @pytest.mark.asyncio
    async def test_already_paid_skips_gateway(self, service, sample_order):
        service.order_repo.find_by_id.return_value = with_payment(sample_order, status='Paid', token='tok_1')

        status, body = await service.verify_payment_manually(sample_order.id)

        assert status == 200
        assert body['alreadyPaid'] is True
        service.connector.retrieve_checkout_form.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_without_token(self, service, sample_order):
        service.order_repo.find_by_id.return_value = sample_order

        status, body = await service.verify_payment_manually(sample_order.id)

        assert status == 400
        assert body['noToken'] is True

    @pytest.mark.asyncio
    async def test_missing_order_and_id(self, service):
        service.order_repo.find_by_id.return_value = None

        assert (await service.verify_payment_manually(None))[0] == 400
        assert (await service.verify_payment_manually('order-404'))[0] == 404

    @pytest.mark.asyncio
    async def test_failed_payment_leaves_order(self, service, sample_order):
        service.order_repo.find_by_id.return_value = with_payment(sample_order, token='tok_1')
        service.connector.retrieve_checkout_form.return_value = {
            'status': 'failure', 'errorCode': '10051', 'errorMessage': 'Card declined',
        }

        status, body = await service.verify_payment_manually(sample_order.id)

        assert status == 200
        assert body['success'] is False
        assert body['paymentFailed'] is True
        assert body['iyzicoResult']['errorCode'] == '10051'
        service.order_repo.update_fields.assert_not_called()

    @pytest.mark.asyncio
    async def test_pending_payment(self, service, sample_order):
        service.order_repo.find_by_id.return_value = with_payment(sample_order, token='tok_1')
        service.connector.retrieve_checkout_form.return_value = {'status': 'success', 'paymentStatus': 'INIT_THREEDS'}

        status, body = await service.verify_payment_manually(sample_order.id)

        assert body['pending'] is True
        service.order_repo.update_fields.assert_not_called()

    @pytest.mark.asyncio
    async def test_gateway_error(self, service, sample_order):
        service.order_repo.find_by_id.return_value = with_payment(sample_order, token='tok_1')
        service.connector.retrieve_checkout_form.side_effect = Exception('timeout')

        status, body = await service.verify_payment_manually(sample_order.id)

        assert status == 500
        assert body['iyzicoError'] is True
        assert body['error'] == 'iyzico API hatası: timeout'
