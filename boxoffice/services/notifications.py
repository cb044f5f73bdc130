# boxoffice/services/notifications.py
import logging
from typing import Protocol

from boxoffice.models.order import Order

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def ticket_purchased(self, order: Order) -> None: ...


class LogNotifier:
    async def ticket_purchased(self, order: Order) -> None:
        logger.info("Tickets ready for order %s (%s, %s units)",
                    order.id, order.user_email or order.user_id, len(order.tickets_issued))


async def dispatch_confirmation(notifier: Notifier, order: Order) -> None:
    """Fire-and-forget: a failed receipt never undoes a confirmed order."""
    try:
        await notifier.ticket_purchased(order)
    except Exception:
        logger.exception("Failed to send ticket notification for order %s", order.id)


def get_notifier() -> Notifier:
    return LogNotifier()
