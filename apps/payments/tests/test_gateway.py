import hashlib
import hmac
import json
import logging
import pytest
import requests
from decimal import Decimal
from unittest.mock import Mock

from apps.payments.exceptions import GatewayUnavailableError
from apps.payments.gateway import CardDetails, GatewayResult, PaymentGatewayClient, get_payment_gateway


def make_response(status_code=200, data=None):
    response = Mock(status_code=status_code)
    if data is None:
        response.json.side_effect = ValueError('No JSON object could be decoded')
    else:
        response.json.return_value = data
    return response


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def sleep():
    return Mock()


@pytest.fixture
def client(session, sleep):
    return PaymentGatewayClient(
        base_url='https://gateway.test/',
        api_key='api-key',
        secret_key='secret',
        timeout=5,
        max_retries=3,
        retry_backoff=0.5,
        session=session,
        sleep=sleep,
    )


def authorize(client, card):
    return client.authorize(
        payment_id='3f1c9a9e-0000-4000-8000-000000000001',
        amount=Decimal('750.00'),
        currency='TRY',
        card=card,
        callback_url='https://marketplace.test/api/payments/callback/',
    )


# =============================================================================
# Request Tests
# =============================================================================

class TestAuthorize:

    def test_three_d_secure_response(self, client, session, card):
        session.post.return_value = make_response(200, {
            'success': True,
            'reference': 'gw-123',
            'three_d_secure_url': 'https://acs.bank.example/challenge',
        })

        result = authorize(client, card)

        assert result == GatewayResult(
            success=True,
            reference='gw-123',
            three_d_secure_url='https://acs.bank.example/challenge',
        )
        assert result.requires_three_d_secure is True

    def test_signed_request(self, client, session, card):
        session.post.return_value = make_response(200, {'success': True, 'reference': 'gw-123'})

        authorize(client, card)

        args, kwargs = session.post.call_args
        assert args[0] == 'https://gateway.test/payments/authorize'
        assert kwargs['timeout'] == 5

        body = kwargs['data']
        headers = kwargs['headers']
        assert headers['Authorization'] == 'Bearer api-key'
        assert headers['Idempotency-Key'] == '3f1c9a9e-0000-4000-8000-000000000001'
        assert headers['X-Signature'] == hmac.new(b'secret', body, hashlib.sha256).hexdigest()

        payload = json.loads(body)
        assert payload['amount'] == '750.00'
        assert payload['card']['number'] == card.number

    def test_verify_request(self, client, session):
        session.post.return_value = make_response(200, {'success': False, 'error_code': '3ds_failed'})

        result = client.verify(payment_id='p-1', reference='gw-123', status_token='tok')

        assert result.success is False
        assert result.error_code == '3ds_failed'
        args, kwargs = session.post.call_args
        assert args[0] == 'https://gateway.test/payments/verify'
        assert json.loads(kwargs['data']) == {
            'payment_id': 'p-1',
            'gateway_reference': 'gw-123',
            'status_token': 'tok',
        }

    def test_decline_is_not_retried(self, client, session, sleep, card):
        session.post.return_value = make_response(402, {
            'success': False,
            'error_code': 'card_declined',
            'error_message': 'Do not honor',
        })

        result = authorize(client, card)

        assert result.success is False
        assert result.error_code == 'card_declined'
        assert session.post.call_count == 1
        sleep.assert_not_called()

    def test_client_error_without_json(self, client, session, card):
        session.post.return_value = make_response(400)

        result = authorize(client, card)

        assert result.success is False
        assert result.error_code == 'http_400'


# =============================================================================
# Retry Tests
# =============================================================================

class TestRetries:

    def test_retries_server_errors_then_succeeds(self, client, session, sleep, card):
        session.post.side_effect = [
            make_response(503),
            make_response(502),
            make_response(200, {'success': True, 'reference': 'gw-123'}),
        ]

        result = authorize(client, card)

        assert result.success is True
        assert session.post.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_retries_timeouts(self, client, session, card):
        session.post.side_effect = [
            requests.exceptions.Timeout('read timed out'),
            make_response(200, {'success': True, 'reference': 'gw-123'}),
        ]

        assert authorize(client, card).success is True
        assert session.post.call_count == 2

    def test_gives_up_after_max_retries(self, client, session, sleep, card):
        session.post.side_effect = requests.exceptions.ConnectionError('connection refused')

        with pytest.raises(GatewayUnavailableError):
            authorize(client, card)

        assert session.post.call_count == 3
        assert sleep.call_count == 2

    def test_rate_limit_is_retried(self, client, session, card):
        session.post.side_effect = [make_response(429)] * 3

        with pytest.raises(GatewayUnavailableError) as exc_info:
            authorize(client, card)

        assert exc_info.value.status_code == 503
        assert exc_info.value.code == 'gateway_unavailable'

    def test_malformed_success_response_is_retried(self, client, session, card):
        session.post.side_effect = [
            make_response(200),
            make_response(200, {'success': True, 'reference': 'gw-123'}),
        ]

        assert authorize(client, card).success is True


# =============================================================================
# Card Data Handling Tests
# =============================================================================

class TestCardDataHandling:

    def test_card_repr_is_masked(self, card):
        text = repr(card)

        assert card.number not in text
        assert card.cvc not in text
        assert '1111' in text

    def test_masked_number(self, card):
        assert card.masked_number == '**** **** **** 1111'
        assert CardDetails('A', '12', 1, 2030, '000').masked_number == '****'

    def test_card_number_never_logged(self, client, session, card, caplog):
        session.post.side_effect = requests.exceptions.ConnectionError('connection refused')

        with caplog.at_level(logging.DEBUG, logger='apps.payments'):
            with pytest.raises(GatewayUnavailableError):
                authorize(client, card)

        assert caplog.records
        assert card.number not in caplog.text
        assert 'cvc' not in caplog.text.lower()


# =============================================================================
# Configuration Tests
# =============================================================================

class TestConfiguration:

    def test_from_settings(self, settings):
        settings.PAYMENT_GATEWAY = {
            **settings.PAYMENT_GATEWAY,
            'BASE_URL': 'https://configured.test',
            'MAX_RETRIES': 5,
        }

        gateway = get_payment_gateway()

        assert isinstance(gateway, PaymentGatewayClient)
        assert gateway.base_url == 'https://configured.test'
        assert gateway.max_retries == 5

    def test_from_settings_overrides(self):
        gateway = PaymentGatewayClient.from_settings(timeout=1)
        assert gateway.timeout == 1
