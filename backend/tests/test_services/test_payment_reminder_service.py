"""
Unit tests for the payment reminder job and the reminder / refund emails

Author: TM3
Date: 2025-12-04
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from vadiler.services.email_service import EmailService, OrderEmailData
from vadiler.services.payment_reminder_service import (
    LOOKBACK,
    MAX_REMINDERS,
    REMINDER_STATUSES,
    PaymentReminderService,
    get_reminder_meta,
    should_send_reminder,
)

NOW = datetime(2025, 12, 4, 12, 0, tzinfo=timezone.utc)


def waiting_order(order, hours_old=2, status='pending_payment', **payment):
    return order.model_copy(update={
        'status': status,
        'created_at': NOW - timedelta(hours=hours_old),
        'payment': {'method': 'bank_transfer', 'status': 'pending', **payment},
    })


@pytest.fixture
def service():
    return PaymentReminderService(order_repo=MagicMock(), email_service=MagicMock())


# ============================================================================
# Scheduling rules
# ============================================================================

class TestReminderRules:

    def test_reminder_meta_defaults(self):
        assert get_reminder_meta({}) == {'count': 0, 'lastSentAt': None, 'firstSentAt': None}
        assert get_reminder_meta({'reminderMeta': {'count': True}})['count'] == 0

    def test_first_reminder_after_one_hour(self, sample_order):
        assert should_send_reminder(waiting_order(sample_order, hours_old=0.5), NOW)[0] is False
        assert should_send_reminder(waiting_order(sample_order, hours_old=1.5), NOW) == (True, 'Ready to send')

    def test_second_reminder_waits_six_hours(self, sample_order):
        sent_at = (NOW - timedelta(hours=5)).isoformat()
        order = waiting_order(sample_order, hours_old=8, reminderMeta={'count': 1, 'lastSentAt': sent_at})

        send, reason = should_send_reminder(order, NOW)

        assert send is False
        assert reason.startswith('Too early for next reminder')

    def test_stops_after_max_reminders(self, sample_order):
        order = waiting_order(sample_order, hours_old=40, reminderMeta={'count': MAX_REMINDERS})

        assert should_send_reminder(order, NOW) == (False, 'Max reminders reached (3)')


# ============================================================================
# Job
# ============================================================================

class TestSendReminders:

    def test_queries_recent_waiting_orders(self, service):
        service.order_repo.find_stuck_payments.return_value = []

        result = service.send_reminders(now=NOW)

        assert result == {'success': True, 'message': 'No pending payment orders', 'processed': 0, 'sent': 0}
        kwargs = service.order_repo.find_stuck_payments.call_args.kwargs
        assert kwargs['statuses'] == list(REMINDER_STATUSES)
        assert kwargs['created_after'] == NOW - LOOKBACK
        assert kwargs['created_before'] == NOW

    def test_sends_and_records_reminder(self, service, sample_order):
        # Arrange
        order = waiting_order(sample_order, hours_old=2)
        service.order_repo.find_stuck_payments.return_value = [order]
        service.email_service.send_payment_reminder.return_value = True

        # Act
        result = service.send_reminders(now=NOW)

        # Assert
        assert (result['processed'], result['sent']) == (1, 1)
        assert result['results'][0]['action'] == 'reminder_sent'

        data, status, count = service.email_service.send_payment_reminder.call_args[0]
        assert data.customer_email == 'ayse@example.com'
        assert status == 'pending_payment'
        assert count == 1

        payment = service.order_repo.update_fields.call_args[0][1]['payment']
        assert payment['method'] == 'bank_transfer'
        assert payment['reminderMeta'] == {
            'count': 1, 'lastSentAt': NOW.isoformat(), 'firstSentAt': NOW.isoformat(),
        }

    def test_skips_orders_without_email_or_too_early(self, service, sample_order):
        no_email = waiting_order(sample_order).model_copy(update={'customer_email': ''})
        too_early = waiting_order(sample_order, hours_old=0.2)
        service.order_repo.find_stuck_payments.return_value = [no_email, too_early]

        result = service.send_reminders(now=NOW)

        assert result['sent'] == 0
        assert result['results'][0]['action'] == 'skipped_no_email'
        assert result['results'][1]['action'].startswith('skipped: Too early')
        service.email_service.send_payment_reminder.assert_not_called()

    def test_failed_send_is_not_recorded(self, service, sample_order):
        service.order_repo.find_stuck_payments.return_value = [waiting_order(sample_order)]
        service.email_service.send_payment_reminder.return_value = False

        result = service.send_reminders(now=NOW)

        assert result['results'][0]['action'] == 'send_failed'
        service.order_repo.update_fields.assert_not_called()

    def test_record_failure_still_counts_as_sent(self, service, sample_order):
        service.order_repo.find_stuck_payments.return_value = [waiting_order(sample_order)]
        service.email_service.send_payment_reminder.return_value = True
        service.order_repo.update_fields.side_effect = Exception("db down")

        assert service.send_reminders(now=NOW)['sent'] == 1

    def test_order_without_products_gets_placeholder_line(self, service, sample_order):
        order = waiting_order(sample_order).model_copy(update={'products': []})
        service.order_repo.find_stuck_payments.return_value = [order]
        service.email_service.send_payment_reminder.return_value = True

        service.send_reminders(now=NOW)

        data = service.email_service.send_payment_reminder.call_args[0][0]
        assert [item.name for item in data.items] == ['Çiçek Siparişi']
        assert data.items[0].price == 1500.0


# ============================================================================
# Emails
# ============================================================================

class TestReminderAndRefundEmails:

    @pytest.fixture
    def email_service(self):
        return EmailService(host='smtp.test', port=587, user='bilgi@vadiler.com', password='x',
                            site_url='https://vadiler.test')

    def test_reminder_subject_follows_reminder_number(self, email_service):
        data = OrderEmailData(order_number='100123', customer_email='ayse@example.com', total=1500)

        with patch.object(email_service, 'send_email', return_value=True) as send:
            email_service.send_payment_reminder(data, 'pending_payment', 3)
            email_service.send_payment_reminder(data, 'payment_failed', 1)

        first, second = send.call_args_list
        assert first.args[1] == '🚨 Son Hatırlatma: Siparişiniz iptal edilecek - #100123'
        assert '#payment-section' in first.kwargs['text_body']
        assert second.args[1] == '❌ Ödemeniz başarısız oldu - #100123'

    def test_refund_email_mentions_amount_and_reason(self, email_service):
        with patch.object(email_service, 'send_email', return_value=True) as send:
            sent = email_service.send_order_status_update(
                customer_email='ayse@example.com',
                customer_name='Ayşe',
                order_number='100123',
                status='refunded',
                refund_amount=250,
                refund_reason='Eksik ürün',
            )

        assert sent is True
        subject, body = send.call_args.args[1], send.call_args.args[2]
        assert subject == 'İade İşleminiz Tamamlandı - #100123'
        assert '250,00 TL' in body
        assert 'Eksik ürün' in body
