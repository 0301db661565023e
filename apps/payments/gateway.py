"""
Card payment gateway client.

Talks JSON over HTTPS to the acquiring gateway:

    POST {BASE_URL}/payments/authorize   start a charge, may require 3-D Secure
    POST {BASE_URL}/payments/verify      server-to-server status check

Every request carries the API key, an Idempotency-Key and an HMAC-SHA256
signature of the body. Connection errors, timeouts, HTTP 429 and 5xx are
retried a bounded number of times; once retries are exhausted
GatewayUnavailableError is raised.

Card numbers and CVCs exist only in the outgoing request body. They are
never logged and never stored.
"""

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

import requests
from django.conf import settings
from django.utils.module_loading import import_string

from .exceptions import GatewayUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CardDetails:
    """Raw card data for a single authorization call."""

    holder_name: str
    number: str = field(repr=False)
    expiry_month: int
    expiry_year: int
    cvc: str = field(repr=False)

    @property
    def masked_number(self) -> str:
        digits = ''.join(ch for ch in self.number if ch.isdigit())
        return f"**** **** **** {digits[-4:]}" if len(digits) >= 4 else '****'

    def __repr__(self):
        return f"CardDetails(holder_name={self.holder_name!r}, number={self.masked_number!r})"

    def as_payload(self) -> dict:
        return {
            'holder_name': self.holder_name,
            'number': self.number,
            'expiry_month': self.expiry_month,
            'expiry_year': self.expiry_year,
            'cvc': self.cvc,
        }


@dataclass(frozen=True)
class GatewayResult:
    """Normalized gateway answer."""

    success: bool
    reference: str = ''
    three_d_secure_url: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def requires_three_d_secure(self) -> bool:
        return self.success and bool(self.three_d_secure_url)

    @classmethod
    def from_response(cls, data: dict) -> 'GatewayResult':
        return cls(
            success=bool(data.get('success')),
            reference=data.get('reference') or '',
            three_d_secure_url=data.get('three_d_secure_url') or None,
            error_code=data.get('error_code'),
            error_message=data.get('error_message'),
        )


class PaymentGatewayClient:
    """HTTP client for the card gateway with bounded retries."""

    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        secret_key: str,
        timeout: float = 10,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
        session: Optional[requests.Session] = None,
        sleep=time.sleep,
    ):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.secret_key = secret_key
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self.session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_settings(cls, **overrides) -> 'PaymentGatewayClient':
        config = settings.PAYMENT_GATEWAY
        options = {
            'base_url': config['BASE_URL'],
            'api_key': config['API_KEY'],
            'secret_key': config['SECRET_KEY'],
            'timeout': config['TIMEOUT_SECONDS'],
            'max_retries': config['MAX_RETRIES'],
            'retry_backoff': config['RETRY_BACKOFF_SECONDS'],
        }
        options.update(overrides)
        return cls(**options)

    def sign(self, body: bytes) -> str:
        return hmac.new(self.secret_key.encode(), body, hashlib.sha256).hexdigest()

    def authorize(
        self,
        *,
        payment_id,
        amount: Decimal,
        currency: str,
        card: CardDetails,
        callback_url: str,
    ) -> GatewayResult:
        """Start a charge. A 3-D Secure challenge comes back as three_d_secure_url."""
        payload = {
            'payment_id': str(payment_id),
            'amount': f"{amount:.2f}",
            'currency': currency,
            'callback_url': callback_url,
            'card': card.as_payload(),
        }
        logger.info(
            "Authorizing payment %s: %s %s with card %s",
            payment_id, payload['amount'], currency, card.masked_number
        )
        return GatewayResult.from_response(
            self._post('/payments/authorize', payload, idempotency_key=str(payment_id))
        )

    def verify(self, *, payment_id, reference: str, status_token: str) -> GatewayResult:
        """Ask the gateway for the authoritative outcome of a payment."""
        payload = {
            'payment_id': str(payment_id),
            'gateway_reference': reference,
            'status_token': status_token,
        }
        logger.info("Verifying payment %s", payment_id)
        return GatewayResult.from_response(
            self._post('/payments/verify', payload, idempotency_key=f"verify-{payment_id}")
        )

    def _post(self, path: str, payload: dict, *, idempotency_key: str) -> dict:
        url = f"{self.base_url}{path}"
        body = json.dumps(payload, separators=(',', ':'), sort_keys=True).encode()
        headers = {
            'Authorization': f"Bearer {self.api_key}",
            'Content-Type': 'application/json',
            'Idempotency-Key': idempotency_key,
            'X-Signature': self.sign(body),
        }

        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.post(url, data=body, headers=headers, timeout=self.timeout)
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                if response.status_code in self.RETRYABLE_STATUS_CODES:
                    last_error = f"HTTP {response.status_code}"
                else:
                    try:
                        data = response.json()
                    except ValueError:
                        data = None

                    if isinstance(data, dict):
                        return data
                    if response.status_code >= 400:
                        return {
                            'success': False,
                            'error_code': f"http_{response.status_code}",
                            'error_message': 'Gateway rejected the request',
                        }
                    last_error = 'Malformed gateway response'

            if attempt < self.max_retries:
                delay = self.retry_backoff * attempt
                logger.warning(
                    "Gateway %s failed (attempt %d/%d): %s; retrying in %.1fs",
                    path, attempt, self.max_retries, last_error, delay
                )
                self._sleep(delay)

        logger.error("Gateway %s unavailable after %d attempts: %s", path, self.max_retries, last_error)
        raise GatewayUnavailableError(
            "Payment provider is temporarily unavailable. Please try again later."
        )


def get_payment_gateway():
    """Build the gateway configured in settings.PAYMENT_GATEWAY['BACKEND']."""
    backend = import_string(settings.PAYMENT_GATEWAY['BACKEND'])
    return backend.from_settings()
