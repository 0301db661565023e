"""
Need expiry sweep.

Run periodically (see the ``expire_needs`` management command). Active
needs whose expiry time has passed move to expired. Their pending offers
are left as they are; an expired need can no longer accept them.
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from django.db import transaction
from django.utils import timezone

from apps.needs.exceptions import InvalidStateTransitionError
from apps.needs.models import Need, NeedStatus

from .need_management import change_need_status, lock_need

logger = logging.getLogger(__name__)


def find_expired_needs(*, now: Optional[datetime] = None) -> List[UUID]:
    """IDs of active needs whose expiry time is before ``now``."""
    now = now or timezone.now()
    return list(
        Need.objects
        .filter(status=NeedStatus.ACTIVE, expires_at__lt=now)
        .values_list('id', flat=True)
    )


def expire_needs(*, now: Optional[datetime] = None) -> int:
    """
    Expire every active need past its expiry time.

    Each need is handled in its own transaction under the need lock, so an
    offer accepted at the same moment either wins (need moves to
    in_progress and is skipped here) or loses with InvalidStateTransitionError.
    Running the sweep again is harmless.

    Returns:
        Number of needs moved to expired
    """
    now = now or timezone.now()
    expired = 0

    for need_id in find_expired_needs(now=now):
        with transaction.atomic():
            need = lock_need(need_id)
            if need.status != NeedStatus.ACTIVE or need.expires_at is None or need.expires_at >= now:
                continue
            try:
                change_need_status(need, NeedStatus.EXPIRED)
            except InvalidStateTransitionError:
                logger.info("Need %s changed before it could expire", need_id)
                continue
            expired += 1

    if expired:
        logger.info("Expired %d need(s)", expired)
    return expired
