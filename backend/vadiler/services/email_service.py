"""
Email notifications (order confirmation, bank transfer, status updates, payment reminders)

Sent over SMTP with the standard library client. Every public method returns
a bool and never raises: callers treat emails as best-effort side effects.

Author: TM3
Date: 2025-12-04
"""
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, List, Optional, Union
from urllib.parse import urlencode

from pydantic import BaseModel, Field

from vadiler.core.config import settings
from vadiler.services.payment_helpers import normalize_phone

logger = logging.getLogger(__name__)

DEFAULT_SENDER = 'bilgi@vadiler.com'
SENDER_NAME = 'Vadiler Çiçekçilik'

BANK_ACCOUNT = {
    'bank': 'Garanti Bankası',
    'holder': 'STR GRUP A.Ş',
    'iban': 'TR12 0006 2000 7520 0006 2942 76',
}

# status -> (title, subject, message)
STATUS_MESSAGES = {
    'confirmed': (
        'Siparişiniz Onaylandı',
        'Siparişiniz Onaylandı',
        'Siparişiniz onaylandı. Teslimat günü belirlenen saatlerde durumunuz otomatik güncellenecektir.',
    ),
    'processing': (
        'Siparişiniz Hazırlanıyor',
        'Siparişiniz Hazırlanıyor',
        'Siparişiniz hazırlanıyor. Çok yakında yola çıkacak.',
    ),
    'shipped': (
        'Siparişiniz Yola Çıktı',
        'Siparişiniz Yola Çıktı',
        'Siparişiniz yola çıktı. Yakında teslim edilecek.',
    ),
    'delivered': (
        'Siparişiniz Teslim Edildi',
        'Siparişiniz Teslim Edildi',
        'Siparişiniz teslim edildi. Bizi tercih ettiğiniz için teşekkür ederiz.',
    ),
    'cancelled': (
        'Siparişiniz İptal Edildi',
        'Siparişiniz İptal Edildi',
        'Siparişiniz iptal edildi. Ödeme yaptıysanız, iade işlemi başlatılacaktır. '
        'Detaylı bilgi için bizimle iletişime geçebilirsiniz.',
    ),
    'refunded': (
        'Siparişiniz İade Edildi',
        'İade İşleminiz Tamamlandı',
        'Siparişiniz için iade işlemi tamamlanmıştır.',
    ),
}

# reminder number -> (headline, subject prefix, button label, color)
REMINDER_MESSAGES = {
    1: ('Siparişiniz sizi bekliyor!', '🛒 Siparişiniz bekliyor!', 'Ödemeyi Tamamla', '#3b82f6'),
    2: ('Siparişiniz hâlâ bekliyor!', '⏰ Ödemenizi unutmayın!', 'Hemen Öde', '#f59e0b'),
    3: ('Son Hatırlatma!', '🚨 Son Hatırlatma: Siparişiniz iptal edilecek', 'Acil Öde', '#ef4444'),
}
FAILED_PAYMENT_REMINDER = ('Ödemeniz başarısız oldu!', '❌ Ödemeniz başarısız oldu', 'Tekrar Dene', '#ef4444')


class EmailItem(BaseModel):
    name: str = ''
    quantity: float = 0
    price: float = 0


class OrderEmailData(BaseModel):
    """Everything the order emails render"""
    order_number: str
    customer_name: str = ''
    customer_email: str
    customer_phone: Optional[str] = ''
    verification_type: Optional[str] = 'email'
    verification_value: Optional[str] = None
    items: List[EmailItem] = Field(default_factory=list)
    subtotal: float = 0
    discount: float = 0
    delivery_fee: float = 0
    total: float = 0
    delivery_address: Optional[str] = None
    district: Optional[str] = None
    delivery_date: Optional[str] = None
    delivery_time: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    payment_method: Optional[str] = 'credit_card'


def _money(value: float) -> str:
    return f"{value:,.2f} TL".replace(',', 'X').replace('.', ',').replace('X', '.')


def _esc(value) -> str:
    return html.escape(str(value or ''))


class EmailService:
    """SMTP email sender"""

    def __init__(
        self,
        host: str = None,
        port: int = None,
        user: str = None,
        password: str = None,
        secure: Optional[bool] = None,
        site_url: str = None,
    ):
        self.host = host or settings.SMTP_HOST
        self.port = int(port or settings.SMTP_PORT)
        self.user = user if user is not None else settings.SMTP_USER
        self.password = password if password is not None else settings.SMTP_PASSWORD
        configured_secure = secure if secure is not None else settings.SMTP_SECURE
        # Implicit TLS on 465 unless told otherwise
        self.secure = configured_secure if configured_secure is not None else self.port == 465
        self.site_url = (site_url or settings.APP_URL or 'https://vadiler.com').rstrip('/')

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    @property
    def sender(self) -> str:
        return self.user or DEFAULT_SENDER

    def build_tracking_url(self, order_number: str, verification_type: Optional[str] = None,
                           verification_value: Optional[str] = None) -> str:
        params = {'order': order_number}
        value = (verification_value or '').strip()
        if verification_type in ('email', 'phone') and value:
            params['vtype'] = verification_type
            params['v'] = value
        return f"{self.site_url}/siparis-takip?{urlencode(params)}"

    # =========================================================================
    # Transport
    # =========================================================================

    def send_email(self, to: Union[str, List[str]], subject: str, html_body: str,
                   text_body: Optional[str] = None) -> bool:
        """Send a single email. Returns False (and logs) on any failure."""
        if not self.is_configured:
            logger.warning("Email not sent: SMTP credentials not configured")
            return False

        recipients = to if isinstance(to, list) else [to]

        try:
            msg = MIMEMultipart('alternative')
            msg['From'] = f"{SENDER_NAME} <{self.sender}>"
            msg['To'] = ', '.join(recipients)
            msg['Subject'] = subject
            if text_body:
                msg.attach(MIMEText(text_body, 'plain', 'utf-8'))
            msg.attach(MIMEText(html_body, 'html', 'utf-8'))

            if self.secure:
                with smtplib.SMTP_SSL(self.host, self.port, timeout=30) as server:
                    server.login(self.user, self.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                    server.starttls()
                    server.login(self.user, self.password)
                    server.send_message(msg)

            logger.info(f"Email sent to {msg['To']}: {subject}")
            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {recipients}: {e}")
            return False

    # =========================================================================
    # Templates
    # =========================================================================

    def _layout(self, title: str, body: str) -> str:
        return f"""<!DOCTYPE html>
<html lang="tr">
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1"><title>{_esc(title)}</title></head>
<body style="margin:0;padding:0;background:#f6f6f6;font-family:Arial,Helvetica,sans-serif;color:#1f2937;">
<table role="presentation" width="100%" cellpadding="0" cellspacing="0"><tr><td align="center" style="padding:24px;">
<table role="presentation" width="600" cellpadding="0" cellspacing="0" style="background:#ffffff;border-radius:12px;">
<tr><td style="padding:24px;border-bottom:1px solid #eee;"><h1 style="margin:0;font-size:22px;color:#e05a47;">Vadiler</h1></td></tr>
<tr><td style="padding:24px;">
<h2 style="margin:0 0 16px;font-size:20px;">{_esc(title)}</h2>
{body}
</td></tr>
<tr><td style="padding:16px 24px;font-size:12px;color:#6b7280;border-top:1px solid #eee;">
{SENDER_NAME} &middot; <a href="{self.site_url}" style="color:#6b7280;">{self.site_url}</a>
</td></tr>
</table></td></tr></table>
</body></html>"""

    def _items_table(self, data: OrderEmailData) -> str:
        rows = ''.join(
            f"<tr><td style=\"padding:6px 0;\">{_esc(item.name)} &times; {item.quantity:g}</td>"
            f"<td align=\"right\">{_money(item.price * item.quantity)}</td></tr>"
            for item in data.items
        )
        totals = f"<tr><td style=\"padding-top:12px;\">Ara Toplam</td><td align=\"right\">{_money(data.subtotal)}</td></tr>"
        if data.discount:
            totals += f"<tr><td>İndirim</td><td align=\"right\">-{_money(data.discount)}</td></tr>"
        totals += f"<tr><td>Teslimat</td><td align=\"right\">{_money(data.delivery_fee) if data.delivery_fee else 'Ücretsiz'}</td></tr>"
        totals += f"<tr><td><strong>Toplam</strong></td><td align=\"right\"><strong>{_money(data.total)}</strong></td></tr>"
        return f"<table role=\"presentation\" width=\"100%\" style=\"font-size:14px;\">{rows}{totals}</table>"

    def _delivery_block(self, data: OrderEmailData) -> str:
        lines = []
        if data.recipient_name:
            lines.append(f"Alıcı: {_esc(data.recipient_name)}")
        if data.delivery_address:
            district = f" ({_esc(data.district)})" if data.district else ''
            lines.append(f"Adres: {_esc(data.delivery_address)}{district}")
        if data.delivery_date:
            slot = f" {_esc(data.delivery_time)}" if data.delivery_time else ''
            lines.append(f"Teslimat: {_esc(data.delivery_date)}{slot}")
        if not lines:
            return ''
        return "<p style=\"font-size:14px;line-height:1.6;\">" + '<br>'.join(lines) + "</p>"

    def _button(self, url: str, label: str, color: str = '#e05a47') -> str:
        return (
            f"<p style=\"margin:24px 0;\"><a href=\"{_esc(url)}\" style=\"background:{color};color:#fff;"
            f"padding:12px 20px;border-radius:8px;text-decoration:none;\">{_esc(label)}</a></p>"
        )

    # =========================================================================
    # Public API
    # =========================================================================

    def send_order_confirmation(self, data: OrderEmailData) -> bool:
        try:
            tracking_url = self.build_tracking_url(
                data.order_number, data.verification_type, data.verification_value or data.customer_email
            )
            body = (
                f"<p>Merhaba {_esc(data.customer_name) or 'Değerli Müşterimiz'},</p>"
                f"<p>#{_esc(data.order_number)} numaralı siparişiniz alındı ve ödemeniz onaylandı.</p>"
                f"{self._items_table(data)}{self._delivery_block(data)}"
                f"{self._button(tracking_url, 'Siparişimi Takip Et')}"
            )
            return self.send_email(
                data.customer_email,
                f"✓ Siparişiniz Alındı - #{data.order_number}",
                self._layout('Siparişiniz Alındı', body),
            )
        except Exception as e:
            logger.error(f"Order confirmation email failed for #{data.order_number}: {e}")
            return False

    def send_bank_transfer_confirmation(self, data: OrderEmailData) -> bool:
        try:
            tracking_url = self.build_tracking_url(
                data.order_number, data.verification_type, data.verification_value or data.customer_email
            )
            bank = (
                "<p style=\"font-size:14px;line-height:1.6;background:#fef3c7;padding:12px;border-radius:8px;\">"
                f"Banka: {BANK_ACCOUNT['bank']}<br>Alıcı: {BANK_ACCOUNT['holder']}<br>IBAN: {BANK_ACCOUNT['iban']}<br>"
                f"Tutar: <strong>{_money(data.total)}</strong><br>"
                f"Açıklama: <strong>{_esc(data.order_number)}</strong></p>"
            )
            body = (
                f"<p>Merhaba {_esc(data.customer_name) or 'Değerli Müşterimiz'},</p>"
                f"<p>#{_esc(data.order_number)} numaralı siparişiniz alındı. Havale/EFT ödemeniz "
                "onaylandığında siparişiniz hazırlanmaya başlayacaktır. Lütfen açıklama kısmına "
                "sipariş numaranızı yazınız.</p>"
                f"{bank}{self._items_table(data)}{self._delivery_block(data)}"
                f"{self._button(tracking_url, 'Siparişimi Takip Et')}"
            )
            return self.send_email(
                data.customer_email,
                f"🏦 Siparişiniz Alındı - Ödeme Bekleniyor - #{data.order_number}",
                self._layout('Ödeme Bekleniyor', body),
            )
        except Exception as e:
            logger.error(f"Bank transfer email failed for #{data.order_number}: {e}")
            return False

    def send_order_status_update(
        self,
        customer_email: str,
        customer_name: str,
        order_number: str,
        status: str,
        delivery: Optional[Dict[str, Optional[str]]] = None,
        refund_amount: Optional[float] = None,
        refund_reason: Optional[str] = None,
    ) -> bool:
        meta = STATUS_MESSAGES.get(status)
        if not meta:
            logger.warning(f"No status email template for '{status}'")
            return False

        try:
            title, subject, message = meta
            if status == 'refunded':
                if refund_amount:
                    message += f" İade tutarı: {_money(refund_amount)}."
                message += ' Tutar, ödeme yönteminize göre 3-7 iş günü içinde hesabınıza yansıyacaktır.'
                if refund_reason:
                    message += f" İade sebebi: {refund_reason}"
            delivery = delivery or {}
            data = OrderEmailData(
                order_number=order_number,
                customer_name=customer_name,
                customer_email=customer_email,
                delivery_address=delivery.get('delivery_address'),
                district=delivery.get('district'),
                delivery_date=delivery.get('delivery_date'),
                delivery_time=delivery.get('delivery_time'),
                recipient_name=delivery.get('recipient_name'),
            )
            color = '#ef4444' if status == 'cancelled' else '#e05a47'
            body = (
                f"<p>Merhaba {_esc(customer_name) or 'Değerli Müşterimiz'},</p>"
                f"<p>#{_esc(order_number)}: {_esc(message)}</p>"
                f"{self._delivery_block(data)}"
                f"{self._button(self.build_tracking_url(order_number, 'email', customer_email), 'Siparişimi Takip Et', color)}"
            )
            return self.send_email(customer_email, f"{subject} - #{order_number}", self._layout(title, body))
        except Exception as e:
            logger.error(f"Status email ({status}) failed for #{order_number}: {e}")
            return False

    def send_payment_reminder(self, data: OrderEmailData, status: str, reminder_count: int) -> bool:
        """Nth reminder (1-3) for an order still waiting for payment"""
        try:
            if status == 'payment_failed':
                headline, subject, label, color = FAILED_PAYMENT_REMINDER
            else:
                headline, subject, label, color = REMINDER_MESSAGES.get(reminder_count, REMINDER_MESSAGES[1])

            payment_url = self.build_tracking_url(data.order_number, 'email', data.customer_email) + '#payment-section'
            body = (
                f"<p>Merhaba {_esc(data.customer_name) or 'Değerli Müşterimiz'},</p>"
                f"<p>#{_esc(data.order_number)} numaralı siparişinizin ödemesi henüz tamamlanmadı. "
                "Ödemenizi tamamlayarak çiçeklerinizi güvenceye alabilirsiniz.</p>"
                f"{self._items_table(data)}{self._delivery_block(data)}"
                f"{self._button(payment_url, label, color)}"
            )
            text = f"{headline} - Sipariş No: {data.order_number}. Toplam: {_money(data.total)}. Ödeme için: {payment_url}"
            return self.send_email(
                data.customer_email,
                f"{subject} - #{data.order_number}",
                self._layout(headline, body),
                text_body=text,
            )
        except Exception as e:
            logger.error(f"Payment reminder email failed for #{data.order_number}: {e}")
            return False


def delivery_fields(delivery) -> Dict[str, Optional[str]]:
    """Delivery details used by the email templates"""
    if not isinstance(delivery, dict):
        return {}
    raw_phone = str(delivery.get('recipientPhone') or '')
    return {
        'delivery_date': delivery.get('deliveryDate') or None,
        'delivery_time': delivery.get('deliveryTimeSlot') or delivery.get('deliveryTime') or None,
        'delivery_address': (
            delivery.get('fullAddress') or delivery.get('recipientAddress') or delivery.get('address') or None
        ),
        'district': delivery.get('district') or None,
        'recipient_name': delivery.get('recipientName') or None,
        'recipient_phone': normalize_phone(raw_phone) if raw_phone else None,
    }


def order_email_data(order, payment_method: Optional[str] = None) -> OrderEmailData:
    """Build the email payload from an Order"""
    items = [
        EmailItem(
            name=str(p.get('name') or ''),
            quantity=float(p.get('quantity') or 0),
            price=float(p.get('price') or 0),
        )
        for p in order.products if isinstance(p, dict)
    ]
    email = (order.customer_email or '').strip()
    return OrderEmailData(
        order_number=str(order.order_number),
        customer_name=order.customer_name or '',
        customer_email=email,
        customer_phone=order.customer_phone or '',
        verification_type='email',
        verification_value=email,
        items=items,
        subtotal=float(order.subtotal or 0),
        discount=float(order.discount or 0),
        delivery_fee=float(order.delivery_fee or 0),
        total=float(order.total or 0),
        payment_method=payment_method or order.payment.get('method') or 'credit_card',
        **delivery_fields(order.delivery),
    )


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
