import logging
from datetime import datetime, timedelta

from .models import QuestionType
from .store import Store

logger = logging.getLogger(__name__)

WINDOW = timedelta(hours=24)


def window_start(now: datetime) -> datetime:
    return now - WINDOW


class GuestRateLimiter:
    """Caps practice sessions per guest and question type in a trailing window.

    The count and the session creation that follows are separate steps, so
    concurrent starts from one guest can overshoot the limit slightly. The
    limit is soft.
    """

    def __init__(self, store: Store):
        self.store = store

    def check_and_consume(
        self, guest_id: str, qtype: QuestionType, limit: int, since: datetime
    ) -> bool:
        used = self.store.count_guest_sessions(guest_id, qtype, since)
        if used >= limit:
            logger.info(f"Guest {guest_id} hit practice limit for {qtype.value} ({used}/{limit})")
            return False
        return True
