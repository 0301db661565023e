import pytest
from decimal import Decimal
from unittest.mock import patch
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from apps.accounts.models import User
from apps.needs.models import Category, Need, Offer
from apps.needs.services import accept_offer
from apps.notifications.events import domain_event
from apps.payments.exceptions import GatewayUnavailableError
from apps.payments.gateway import CardDetails, GatewayResult


class FakeGateway:
    """
    In-memory stand-in for PaymentGatewayClient.

    Set ``authorize_result`` / ``verify_result`` to a GatewayResult or an
    exception instance to raise.
    """

    def __init__(self):
        self.authorize_result = GatewayResult(
            success=True,
            reference='gw-ref-1',
            three_d_secure_url='https://acs.bank.example/challenge/1',
        )
        self.verify_result = GatewayResult(success=True, reference='gw-ref-1')
        self.authorize_calls = []
        self.verify_calls = []

    def authorize(self, **kwargs):
        self.authorize_calls.append(kwargs)
        if isinstance(self.authorize_result, Exception):
            raise self.authorize_result
        return self.authorize_result

    def verify(self, **kwargs):
        self.verify_calls.append(kwargs)
        if isinstance(self.verify_result, Exception):
            raise self.verify_result
        return self.verify_result


def client_for(user):
    """Return an API client authenticated as ``user``."""
    client = APIClient()
    refresh = RefreshToken.for_user(user)
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
    return client


@pytest.fixture
def api_client():
    """Return an unauthenticated API client."""
    return APIClient()


@pytest.fixture
def gateway():
    """Fake gateway, also installed as the configured one."""
    fake = FakeGateway()
    with patch('apps.payments.services.payment_authorization.get_payment_gateway', return_value=fake), \
            patch('apps.payments.services.reconciliation.get_payment_gateway', return_value=fake):
        yield fake


@pytest.fixture
def unavailable():
    return GatewayUnavailableError("Payment provider is temporarily unavailable. Please try again later.")


@pytest.fixture
def card():
    return CardDetails(
        holder_name='Ayse Yilmaz',
        number='4111111111111111',
        expiry_month=12,
        expiry_year=2099,
        cvc='123',
    )


@pytest.fixture
def card_payload():
    return {
        'holder_name': 'Ayse Yilmaz',
        'number': '4111 1111 1111 1111',
        'expiry_month': 12,
        'expiry_year': 2099,
        'cvc': '123',
    }


@pytest.fixture
def buyer(db):
    """Create and return the user who posts needs and pays."""
    return User.objects.create_user(
        email='buyer@example.com',
        password='TestPass123!',
        display_name='Buyer',
        email_verified=True,
    )


@pytest.fixture
def provider(db):
    """Create and return the provider whose offer gets accepted."""
    return User.objects.create_user(
        email='provider@example.com',
        password='TestPass123!',
        display_name='Provider',
        email_verified=True,
    )


@pytest.fixture
def stranger(db):
    """Create and return a user unrelated to the need."""
    return User.objects.create_user(
        email='stranger@example.com',
        password='TestPass123!',
        display_name='Stranger',
        email_verified=True,
    )


@pytest.fixture
def buyer_client(buyer):
    return client_for(buyer)


@pytest.fixture
def need(db, buyer):
    """Create and return an active need."""
    category = Category.objects.create(name='Gardening', slug='gardening')
    return Need.objects.create(
        owner=buyer,
        category=category,
        title='Trim the garden hedge',
        description='Twenty metres of laurel hedge, waste removal included.',
        currency='TRY',
    )


@pytest.fixture
def pending_offer(db, need, provider):
    """Create and return a pending offer."""
    return Offer.objects.create(
        need=need,
        provider=provider,
        price=Decimal('750.00'),
        currency='TRY',
        description='Two gardeners, one afternoon.',
        delivery_days=3,
    )


@pytest.fixture
def accepted_offer(db, need, buyer, pending_offer):
    """Accept the pending offer; the need moves to in_progress."""
    return accept_offer(need_id=need.id, offer_id=pending_offer.id, acting_user=buyer)


@pytest.fixture
def captured_events():
    """Collect domain events delivered while the test runs."""
    events = []

    def collect(sender, event, **kwargs):
        events.append(event)

    domain_event.connect(collect, dispatch_uid='tests.payments.captured_events')
    yield events
    domain_event.disconnect(dispatch_uid='tests.payments.captured_events')
