import pytest
from decimal import Decimal
from uuid import uuid4
from django.urls import reverse
from rest_framework import status
from apps.needs.models import Need, NeedStatus, Offer, OfferStatus
from apps.needs.services import cancel_need

from .conftest import client_for


# =============================================================================
# Category Tests
# =============================================================================

@pytest.mark.django_db
class TestCategoryList:
    """Tests for GET /api/needs/categories/"""

    def test_list_active_categories(self, api_client, category, inactive_category):
        response = api_client.get(reverse('needs:category-list'))

        assert response.status_code == status.HTTP_200_OK
        slugs = [c['slug'] for c in response.data]
        assert 'plumbing' in slugs
        assert 'discontinued' not in slugs


# =============================================================================
# Need Tests
# =============================================================================

@pytest.mark.django_db
class TestNeedList:
    """Tests for GET /api/needs/"""

    def test_list_defaults_to_active(self, api_client, need):
        closed = Need.objects.create(
            owner=need.owner,
            category=need.category,
            title='Old closed request',
            description='Already handled some time ago.',
            status=NeedStatus.CANCELLED,
        )

        response = api_client.get(reverse('needs:need-list'))

        assert response.status_code == status.HTTP_200_OK
        ids = [n['id'] for n in response.data['results']]
        assert str(need.id) in ids
        assert str(closed.id) not in ids

    def test_list_filter_by_status(self, api_client, need, buyer):
        cancel_need(need_id=need.id, acting_user=buyer)

        response = api_client.get(reverse('needs:need-list'), {'status': 'cancelled'})

        assert response.status_code == status.HTTP_200_OK
        assert len(response.data['results']) == 1

    def test_list_mine(self, buyer_client, provider_client, need):
        response = buyer_client.get(reverse('needs:need-list'), {'mine': 'true'})
        assert len(response.data['results']) == 1

        response = provider_client.get(reverse('needs:need-list'), {'mine': 'true'})
        assert len(response.data['results']) == 0

    def test_list_invalid_status(self, api_client):
        response = api_client.get(reverse('needs:need-list'), {'status': 'bogus'})
        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.django_db
class TestNeedCreate:
    """Tests for POST /api/needs/"""

    def test_create_need(self, buyer_client, category):
        response = buyer_client.post(reverse('needs:need-list'), {
            'title': 'Replace bathroom tiles',
            'description': 'Around six square metres of wall tiles.',
            'category_id': str(category.id),
            'min_budget': '1000.00',
            'max_budget': '2500.00',
            'urgency': 'urgent',
        }, format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['status'] == 'active'
        assert response.data['urgency'] == 'urgent'
        assert response.data['category']['slug'] == 'plumbing'
        assert response.data['is_accepting_offers'] is True
        assert response.data['offer_count'] == 0

    def test_create_need_unauthenticated(self, api_client, category):
        response = api_client.post(reverse('needs:need-list'), {
            'title': 'Replace bathroom tiles',
            'description': 'Around six square metres of wall tiles.',
            'category_id': str(category.id),
        }, format='json')

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_guest_cannot_create(self, guest_client, category):
        response = guest_client.post(reverse('needs:need-list'), {
            'title': 'Replace bathroom tiles',
            'description': 'Around six square metres of wall tiles.',
            'category_id': str(category.id),
        }, format='json')

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert Need.objects.count() == 0

    def test_create_need_budget_error(self, buyer_client, category):
        response = buyer_client.post(reverse('needs:need-list'), {
            'title': 'Replace bathroom tiles',
            'description': 'Around six square metres of wall tiles.',
            'category_id': str(category.id),
            'min_budget': '500',
            'max_budget': '100',
        }, format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'validation_error'
        assert response.data['field'] == 'min_budget'

    def test_create_need_unknown_category(self, buyer_client):
        response = buyer_client.post(reverse('needs:need-list'), {
            'title': 'Replace bathroom tiles',
            'description': 'Around six square metres of wall tiles.',
            'category_id': str(uuid4()),
        }, format='json')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['code'] == 'category_not_found'


@pytest.mark.django_db
class TestNeedDetail:
    """Tests for GET/PATCH /api/needs/{id}/"""

    def test_retrieve_need(self, api_client, need, offer):
        response = api_client.get(reverse('needs:need-detail', args=[need.id]))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['title'] == need.title
        assert response.data['offer_count'] == 1
        assert response.data['owner']['display_name'] == 'Buyer'

    def test_retrieve_missing_need(self, api_client):
        response = api_client.get(reverse('needs:need-detail', args=[uuid4()]))
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_owner_updates_need(self, buyer_client, need):
        response = buyer_client.patch(
            reverse('needs:need-detail', args=[need.id]),
            {'title': 'Replace kitchen tap cartridge'},
            format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['title'] == 'Replace kitchen tap cartridge'

    def test_non_owner_cannot_update(self, provider_client, need):
        response = provider_client.patch(
            reverse('needs:need-detail', args=[need.id]),
            {'title': 'Replace kitchen tap cartridge'},
            format='json'
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_delete_not_allowed(self, buyer_client, need):
        response = buyer_client.delete(reverse('needs:need-detail', args=[need.id]))
        assert response.status_code == status.HTTP_405_METHOD_NOT_ALLOWED


@pytest.mark.django_db
class TestNeedActions:
    """Tests for cancel / complete / offers / offer_stats."""

    def test_cancel(self, buyer_client, need):
        response = buyer_client.post(reverse('needs:need-cancel', args=[need.id]))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'cancelled'

    def test_cancel_by_stranger(self, provider_client, need):
        response = provider_client.post(reverse('needs:need-cancel', args=[need.id]))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.data['code'] == 'not_authorized'

    def test_cancel_twice_conflict(self, buyer_client, need):
        buyer_client.post(reverse('needs:need-cancel', args=[need.id]))
        response = buyer_client.post(reverse('needs:need-cancel', args=[need.id]))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['code'] == 'invalid_state_transition'

    def test_cancel_malformed_id(self, buyer_client, need):
        response = buyer_client.post(f'/api/needs/{"-" * 36}/cancel/')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        need.refresh_from_db()
        assert need.status == NeedStatus.ACTIVE

    def test_complete_before_payment_conflict(self, buyer_client, need, offer):
        buyer_client.post(
            reverse('needs:need-accept-offer', args=[need.id]),
            {'offer_id': str(offer.id)},
            format='json'
        )
        response = buyer_client.post(reverse('needs:need-complete', args=[need.id]))

        assert response.status_code == status.HTTP_409_CONFLICT

    def test_offers_owner_sees_all(self, buyer_client, need, offer, other_offer):
        response = buyer_client.get(reverse('needs:need-offers', args=[need.id]))

        assert response.status_code == status.HTTP_200_OK
        assert len(response.data) == 2
        assert response.data[0]['price'] == '100.00'

    def test_offers_provider_sees_own(self, provider_client, need, offer, other_offer):
        response = provider_client.get(reverse('needs:need-offers', args=[need.id]))

        assert response.status_code == status.HTTP_200_OK
        assert [o['id'] for o in response.data] == [str(offer.id)]

    def test_offer_stats(self, buyer_client, need, offer, other_offer):
        response = buyer_client.get(reverse('needs:need-offer-stats', args=[need.id]))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['total'] == 2
        assert response.data['pending'] == 2
        assert response.data['lowest_price'] == '100.00'

    def test_offer_stats_forbidden_for_provider(self, provider_client, need, offer):
        response = provider_client.get(reverse('needs:need-offer-stats', args=[need.id]))
        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.django_db
class TestOfferDecisions:
    """Tests for POST /api/needs/{id}/accept_offer/ and reject_offer/"""

    def test_accept_offer(self, buyer_client, need, offer, other_offer):
        response = buyer_client.post(
            reverse('needs:need-accept-offer', args=[need.id]),
            {'offer_id': str(offer.id)},
            format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'accepted'
        other_offer.refresh_from_db()
        assert other_offer.status == OfferStatus.REJECTED

        need_response = buyer_client.get(reverse('needs:need-detail', args=[need.id]))
        assert need_response.data['status'] == 'in_progress'

    def test_second_accept_conflict(self, buyer_client, need, offer, other_offer):
        buyer_client.post(
            reverse('needs:need-accept-offer', args=[need.id]),
            {'offer_id': str(offer.id)},
            format='json'
        )
        response = buyer_client.post(
            reverse('needs:need-accept-offer', args=[need.id]),
            {'offer_id': str(other_offer.id)},
            format='json'
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['code'] == 'invalid_state_transition'

    def test_provider_cannot_accept(self, provider_client, need, offer):
        response = provider_client.post(
            reverse('needs:need-accept-offer', args=[need.id]),
            {'offer_id': str(offer.id)},
            format='json'
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_accept_unknown_offer(self, buyer_client, need):
        response = buyer_client.post(
            reverse('needs:need-accept-offer', args=[need.id]),
            {'offer_id': str(uuid4())},
            format='json'
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['code'] == 'offer_not_found'

    def test_accept_requires_offer_id(self, buyer_client, need):
        response = buyer_client.post(reverse('needs:need-accept-offer', args=[need.id]), {}, format='json')
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_reject_offer(self, buyer_client, need, offer, other_offer):
        response = buyer_client.post(
            reverse('needs:need-reject-offer', args=[need.id]),
            {'offer_id': str(offer.id)},
            format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'rejected'
        other_offer.refresh_from_db()
        assert other_offer.status == OfferStatus.PENDING

    def test_reject_offer_with_reason(self, buyer_client, need, offer):
        response = buyer_client.post(
            reverse('needs:need-reject-offer', args=[need.id]),
            {'offer_id': str(offer.id), 'reason': 'Delivery time is too long'},
            format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['rejection_reason'] == 'Delivery time is too long'

    def test_reject_reason_too_long(self, buyer_client, need, offer):
        response = buyer_client.post(
            reverse('needs:need-reject-offer', args=[need.id]),
            {'offer_id': str(offer.id), 'reason': 'x' * 501},
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST


# =============================================================================
# Offer Tests
# =============================================================================

@pytest.mark.django_db
class TestOfferCreate:
    """Tests for POST /api/offers/"""

    def _payload(self, need, **overrides):
        payload = {
            'need_id': str(need.id),
            'price': '150.00',
            'description': 'Licensed plumber, can come tomorrow.',
            'delivery_days': 1,
        }
        payload.update(overrides)
        return payload

    def test_submit_offer(self, provider_client, need):
        response = provider_client.post(reverse('needs:offer-list'), self._payload(need), format='json')

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['status'] == 'pending'
        assert response.data['need_id'] == str(need.id)
        assert response.data['currency'] == 'TRY'

    def test_submit_on_own_need(self, buyer_client, need):
        response = buyer_client.post(reverse('needs:offer-list'), self._payload(need), format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'self_offer_not_allowed'

    def test_submit_on_closed_need(self, provider_client, buyer, need):
        cancel_need(need_id=need.id, acting_user=buyer)

        response = provider_client.post(reverse('needs:offer-list'), self._payload(need), format='json')

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['code'] == 'need_not_accepting_offers'

    def test_submit_over_budget(self, provider_client, need):
        response = provider_client.post(
            reverse('needs:offer-list'),
            self._payload(need, price='999.00'),
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['field'] == 'price'

    def test_submit_unknown_need(self, provider_client, need):
        response = provider_client.post(
            reverse('needs:offer-list'),
            self._payload(need, need_id=str(uuid4())),
            format='json'
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['code'] == 'need_not_found'

    def test_guest_cannot_submit(self, guest_client, need):
        response = guest_client.post(reverse('needs:offer-list'), self._payload(need), format='json')
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_idempotency_key_header(self, provider_client, need):
        first = provider_client.post(
            reverse('needs:offer-list'),
            self._payload(need),
            format='json',
            HTTP_IDEMPOTENCY_KEY='retry-abc'
        )
        second = provider_client.post(
            reverse('needs:offer-list'),
            self._payload(need),
            format='json',
            HTTP_IDEMPOTENCY_KEY='retry-abc'
        )

        assert first.status_code == status.HTTP_201_CREATED
        assert second.status_code == status.HTTP_201_CREATED
        assert first.data['id'] == second.data['id']
        assert Offer.objects.filter(need=need).count() == 1


@pytest.mark.django_db
class TestOfferDetail:
    """Tests for /api/offers/{id}/"""

    def test_list_own_offers(self, provider_client, offer, other_offer):
        response = provider_client.get(reverse('needs:offer-list'))

        assert response.status_code == status.HTTP_200_OK
        assert [o['id'] for o in response.data['results']] == [str(offer.id)]

    def test_retrieve_as_owner(self, buyer_client, offer):
        response = buyer_client.get(reverse('needs:offer-detail', args=[offer.id]))
        assert response.status_code == status.HTTP_200_OK

    def test_retrieve_as_stranger(self, other_provider, offer):
        response = client_for(other_provider).get(reverse('needs:offer-detail', args=[offer.id]))
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_update_offer(self, provider_client, offer):
        response = provider_client.patch(
            reverse('needs:offer-detail', args=[offer.id]),
            {'price': '99.50'},
            format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['price'] == '99.50'

    def test_owner_cannot_update_offer(self, buyer_client, offer):
        response = buyer_client.patch(
            reverse('needs:offer-detail', args=[offer.id]),
            {'price': '99.50'},
            format='json'
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_withdraw(self, provider_client, offer):
        response = provider_client.post(reverse('needs:offer-withdraw', args=[offer.id]))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['status'] == 'withdrawn'

    def test_withdraw_twice_conflict(self, provider_client, offer):
        provider_client.post(reverse('needs:offer-withdraw', args=[offer.id]))
        response = provider_client.post(reverse('needs:offer-withdraw', args=[offer.id]))

        assert response.status_code == status.HTTP_409_CONFLICT


@pytest.mark.django_db
class TestNeedLifecycleFlow:
    """End-to-end flow through the API."""

    def test_three_offers_accept_middle(self, buyer_client, need, provider, other_provider, third_provider):
        offer_ids = []
        for user, price in ((provider, '120.00'), (other_provider, '110.00'), (third_provider, '130.00')):
            response = client_for(user).post(reverse('needs:offer-list'), {
                'need_id': str(need.id),
                'price': price,
                'description': 'Happy to take this job on.',
                'delivery_days': 2,
            }, format='json')
            assert response.status_code == status.HTTP_201_CREATED
            offer_ids.append(response.data['id'])

        response = buyer_client.post(
            reverse('needs:need-accept-offer', args=[need.id]),
            {'offer_id': offer_ids[1]},
            format='json'
        )
        assert response.status_code == status.HTTP_200_OK

        statuses = dict(Offer.objects.filter(need=need).values_list('id', 'status'))
        assert sorted(statuses.values()) == ['accepted', 'rejected', 'rejected']
        assert statuses[Offer.objects.get(id=offer_ids[1]).id] == 'accepted'
        assert Need.objects.get(id=need.id).status == NeedStatus.IN_PROGRESS
        assert Offer.objects.get(id=offer_ids[1]).price == Decimal('110.00')
