import logging

from django.dispatch import receiver

from .events import domain_event

logger = logging.getLogger(__name__)


@receiver(domain_event, dispatch_uid='notifications.log_domain_event')
def log_domain_event(sender, event, **kwargs):
    """Record every published event for audit and debugging."""
    logger.info("Event %s %s", event.name, event.as_dict())
