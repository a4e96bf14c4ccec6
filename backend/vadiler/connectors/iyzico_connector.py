"""
iyzico REST Connector
Handles all interactions with the iyzico payment API (Checkout Form + 3D Secure)

Requests are signed with IYZWSv2 (HMAC-SHA256 over randomKey + uri path + body),
and carry the legacy IYZWS (SHA1 over the PKI string) header as a fallback.

Author: TM3
Date: 2025-12-04
"""
import base64
import hashlib
import hmac
import json
import logging
import random
import time
from typing import Dict, Optional, Any

import httpx

from vadiler.core.config import settings

logger = logging.getLogger(__name__)

CLIENT_VERSION = 'iyzipay-node-2.0.64'

# Endpoints
CHECKOUT_FORM_INITIALIZE = '/payment/iyzipos/checkoutform/initialize/auth/ecom'
CHECKOUT_FORM_RETRIEVE = '/payment/iyzipos/checkoutform/auth/ecom/detail'
THREE_DS_INITIALIZE = '/payment/3dsecure/initialize'
THREE_DS_AUTH = '/payment/3dsecure/auth'
PAYMENT_DETAIL = '/payment/detail'


def generate_random_key() -> str:
    """epoch milliseconds followed by a random integer below 1e9"""
    return f"{int(time.time() * 1000)}{random.randrange(1_000_000_000)}"


def _pki_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def generate_pki_string(request: Any) -> str:
    """
    Legacy (v1) PKI representation of a request.

    Objects become [k=v,k=v] in their natural key order, arrays become
    [v, v] without keys; nested structures are recursed and None values skipped.
    """
    is_array = isinstance(request, (list, tuple))
    if is_array:
        items = [(None, v) for v in request]
    elif isinstance(request, dict):
        items = list(request.items())
    else:
        return '[]'

    parts = []
    for key, value in items:
        if value is None:
            continue
        if isinstance(value, (dict, list, tuple)):
            rendered = generate_pki_string(value)
        else:
            rendered = _pki_scalar(value)
        parts.append(rendered if is_array else f"{key}={rendered}")

    return '[' + (', ' if is_array else ',').join(parts) + ']'


class IyzicoConnector:
    """
    Connector for the iyzico payment API

    Handles:
    - Checkout Form initialize / retrieve (hosted payment page)
    - 3D Secure initialize / complete
    - Payment detail lookup
    """

    def __init__(self, api_key: str = None, secret_key: str = None, base_url: str = None,
                 timeout: float = 30.0):
        self.api_key = (api_key if api_key is not None else settings.IYZICO_API_KEY or '').strip()
        self.secret_key = (secret_key if secret_key is not None else settings.IYZICO_SECRET_KEY or '').strip()
        self.base_url = (base_url if base_url is not None else settings.IYZICO_BASE_URL or '').strip().rstrip('/')
        self.timeout = timeout

        if not self.api_key or not self.secret_key or not self.base_url:
            raise ValueError(
                "Missing iyzico credentials. Set IYZICO_API_KEY, IYZICO_SECRET_KEY and IYZICO_BASE_URL"
            )

    # =========================================================================
    # Signing
    # =========================================================================

    def _authorization_v2(self, uri_path: str, body: str, random_key: str) -> str:
        signature = hmac.new(
            self.secret_key.encode('utf-8'),
            (random_key + uri_path + body).encode('utf-8'),
            hashlib.sha256,
        ).hexdigest()
        auth_string = f"apiKey:{self.api_key}&randomKey:{random_key}&signature:{signature}"
        return 'IYZWSv2 ' + base64.b64encode(auth_string.encode('utf-8')).decode('ascii')

    def _authorization_v1(self, request: Dict, random_key: str) -> str:
        pki = generate_pki_string(request)
        digest = hashlib.sha1(
            (self.api_key + random_key + self.secret_key + pki).encode('utf-8')
        ).digest()
        return f"IYZWS {self.api_key}:{base64.b64encode(digest).decode('ascii')}"

    def build_headers(self, uri_path: str, body: str, request: Dict, random_key: str = None) -> Dict[str, str]:
        random_key = random_key or generate_random_key()
        return {
            'Content-Type': 'application/json',
            'Authorization': self._authorization_v2(uri_path, body, random_key),
            'Authorization_Fallback': self._authorization_v1(request, random_key),
            'x-iyzi-rnd': random_key,
            'x-iyzi-client-version': CLIENT_VERSION,
        }

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(self, endpoint: str, data: Dict) -> Dict:
        """POST a signed request; the bytes signed are exactly the bytes sent"""
        body = json.dumps(data, separators=(',', ':'), ensure_ascii=False)
        headers = self.build_headers(endpoint, body, data)

        logger.info(f"iyzico API request: {endpoint}")

        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self.base_url}{endpoint}",
                content=body.encode('utf-8'),
                headers=headers,
                timeout=self.timeout
            )

        result = response.json()

        if result.get('status') != 'success':
            logger.error(
                f"iyzico error on {endpoint}: {result.get('errorMessage')} (code: {result.get('errorCode')})"
            )
        else:
            logger.info(f"iyzico API response status: {result.get('status')}")

        return result

    # =========================================================================
    # API
    # =========================================================================

    async def initialize_checkout_form(self, request: Dict) -> Dict:
        return await self._request(CHECKOUT_FORM_INITIALIZE, request)

    async def retrieve_checkout_form(self, request: Dict) -> Dict:
        return await self._request(CHECKOUT_FORM_RETRIEVE, request)

    async def initialize_three_ds(self, request: Dict) -> Dict:
        return await self._request(THREE_DS_INITIALIZE, request)

    async def complete_three_ds(self, payment_id: str, conversation_id: Optional[str] = None) -> Dict:
        """Complete a 3D Secure payment after the bank callback"""
        request = {
            'locale': 'tr',
            'conversationId': conversation_id or generate_random_key(),
            'paymentId': payment_id,
        }
        return await self._request(THREE_DS_AUTH, request)

    async def retrieve_payment(self, payment_id: str, conversation_id: Optional[str] = None) -> Dict:
        request = {
            'locale': 'tr',
            'conversationId': conversation_id or generate_random_key(),
            'paymentId': payment_id,
        }
        return await self._request(PAYMENT_DETAIL, request)

    def is_sandbox(self) -> bool:
        return 'sandbox' in self.base_url

    def get_environment(self) -> str:
        return 'sandbox' if self.is_sandbox() else 'production'


_connector: Optional[IyzicoConnector] = None


def get_iyzico_connector() -> IyzicoConnector:
    """Lazy process-wide connector (raises ValueError when credentials are missing)"""
    global _connector
    if _connector is None:
        _connector = IyzicoConnector()
    return _connector
