import logging
import pytest
from decimal import Decimal
from uuid import uuid4

from apps.notifications.events import (
    NeedStatusChanged,
    OfferAccepted,
    PaymentSucceeded,
    domain_event,
    emit,
)


@pytest.fixture
def received():
    events = []

    def collect(sender, event, **kwargs):
        events.append(event)

    domain_event.connect(collect, dispatch_uid='tests.notifications.received')
    yield events
    domain_event.disconnect(dispatch_uid='tests.notifications.received')


@pytest.mark.django_db
class TestEmit:

    def test_delivered_after_commit(self, received, django_capture_on_commit_callbacks):
        event = OfferAccepted(need_id=uuid4(), offer_id=uuid4(), recipient_id=uuid4())

        with django_capture_on_commit_callbacks() as callbacks:
            emit(event)
            assert received == []

        assert len(callbacks) == 1
        callbacks[0]()
        assert received == [event]

    def test_failing_receiver_does_not_break_delivery(self, received, caplog,
                                                      django_capture_on_commit_callbacks):
        def broken(sender, event, **kwargs):
            raise RuntimeError('push service down')

        domain_event.connect(broken, dispatch_uid='tests.notifications.broken')
        try:
            with caplog.at_level(logging.ERROR, logger='apps.notifications'):
                with django_capture_on_commit_callbacks(execute=True):
                    emit(NeedStatusChanged(
                        need_id=uuid4(),
                        old_status='active',
                        new_status='expired',
                        recipient_id=uuid4(),
                    ))
        finally:
            domain_event.disconnect(dispatch_uid='tests.notifications.broken')

        assert len(received) == 1
        assert 'push service down' in caplog.text

    def test_log_receiver(self, caplog, django_capture_on_commit_callbacks):
        with caplog.at_level(logging.INFO, logger='apps.notifications'):
            with django_capture_on_commit_callbacks(execute=True):
                emit(OfferAccepted(need_id=uuid4(), offer_id=uuid4(), recipient_id=uuid4()))

        assert 'Event OfferAccepted' in caplog.text


class TestEventPayload:

    def test_as_dict_serializes_ids_and_amounts(self):
        payment_id = uuid4()
        event = PaymentSucceeded(
            payment_id=payment_id,
            offer_id=uuid4(),
            amount=Decimal('750.00'),
            currency='TRY',
            recipient_id=uuid4(),
        )

        payload = event.as_dict()

        assert event.name == 'PaymentSucceeded'
        assert payload['payment_id'] == str(payment_id)
        assert payload['amount'] == '750.00'
        assert payload['currency'] == 'TRY'
