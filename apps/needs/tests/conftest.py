import pytest
from datetime import timedelta
from decimal import Decimal
from django.utils import timezone
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from apps.accounts.models import User
from apps.needs.models import Category, Need, Offer
from apps.notifications.events import domain_event


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
def buyer(db):
    """Create and return the user who posts needs."""
    return User.objects.create_user(
        email='buyer@example.com',
        password='TestPass123!',
        display_name='Buyer',
        email_verified=True,
    )


@pytest.fixture
def provider(db):
    """Create and return a provider."""
    return User.objects.create_user(
        email='provider@example.com',
        password='TestPass123!',
        display_name='Provider',
        email_verified=True,
    )


@pytest.fixture
def other_provider(db):
    """Create and return a second provider."""
    return User.objects.create_user(
        email='provider2@example.com',
        password='TestPass123!',
        display_name='Second Provider',
        email_verified=True,
    )


@pytest.fixture
def third_provider(db):
    """Create and return a third provider."""
    return User.objects.create_user(
        email='provider3@example.com',
        password='TestPass123!',
        display_name='Third Provider',
        email_verified=True,
    )


@pytest.fixture
def guest(db):
    """Create and return a browse-only guest."""
    return User.objects.create_guest(email='guest@example.com', display_name='Guest')


@pytest.fixture
def buyer_client(buyer):
    """Return API client authenticated as the buyer."""
    return client_for(buyer)


@pytest.fixture
def provider_client(provider):
    """Return API client authenticated as the provider."""
    return client_for(provider)


@pytest.fixture
def guest_client(guest):
    """Return API client authenticated as a guest."""
    return client_for(guest)


@pytest.fixture
def category(db):
    """Create and return an active category."""
    return Category.objects.create(name='Plumbing', slug='plumbing', sort_order=1)


@pytest.fixture
def inactive_category(db):
    """Create and return a category that no longer takes needs."""
    return Category.objects.create(name='Discontinued', slug='discontinued', is_active=False)


@pytest.fixture
def need(db, buyer, category):
    """Create and return an active need with a budget."""
    return Need.objects.create(
        owner=buyer,
        category=category,
        title='Fix leaking kitchen tap',
        description='The kitchen tap drips constantly and needs a new cartridge.',
        min_budget=Decimal('50.00'),
        max_budget=Decimal('500.00'),
        currency='TRY',
        address='Istanbul, Kadikoy',
    )


@pytest.fixture
def expired_need(db, buyer, category):
    """Create and return an active need whose expiry time has passed."""
    return Need.objects.create(
        owner=buyer,
        category=category,
        title='Paint the balcony railing',
        description='Sand and repaint a four metre balcony railing.',
        currency='TRY',
        expires_at=timezone.now() - timedelta(hours=1),
    )


@pytest.fixture
def offer(db, need, provider):
    """Create and return a pending offer on the need."""
    return Offer.objects.create(
        need=need,
        provider=provider,
        price=Decimal('120.00'),
        currency='TRY',
        description='Can replace the cartridge tomorrow morning.',
        delivery_days=1,
    )


@pytest.fixture
def other_offer(db, need, other_provider):
    """Create and return a second pending offer on the need."""
    return Offer.objects.create(
        need=need,
        provider=other_provider,
        price=Decimal('100.00'),
        currency='TRY',
        description='Cheaper, available later this week.',
        delivery_days=3,
    )


@pytest.fixture
def third_offer(db, need, third_provider):
    """Create and return a third pending offer on the need."""
    return Offer.objects.create(
        need=need,
        provider=third_provider,
        price=Decimal('200.00'),
        currency='TRY',
        description='Includes a brand new tap if required.',
        delivery_days=2,
    )


@pytest.fixture
def captured_events():
    """Collect domain events delivered while the test runs."""
    events = []

    def collect(sender, event, **kwargs):
        events.append(event)

    domain_event.connect(collect, dispatch_uid='tests.captured_events')
    yield events
    domain_event.disconnect(dispatch_uid='tests.captured_events')
