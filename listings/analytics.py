"""View and contact click counters for listings.

Counters are bumped by the backend's increment_listing_counter procedure,
which is atomic. When that call fails the recorder can fall back to a
read-modify-write of the analytics bag guarded by a conditional update on the
bag it read: if another writer got there first nothing is written and the
increment is dropped. Lost increments are logged, never raised.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from backend import Backend, BackendError

logger = logging.getLogger(__name__)


class CounterType(str, Enum):
    VIEW = "view"
    WHATSAPP = "whatsapp"
    EMAIL = "email"


# Analytics bag key for each counter type
COUNTER_KEYS = {
    CounterType.VIEW: "views",
    CounterType.WHATSAPP: "whatsapp_clicks",
    CounterType.EMAIL: "email_clicks",
}


class AnalyticsRecorder:
    """Records listing counters through the backend."""

    def __init__(self, backend: Backend, fallback_enabled: bool = True):
        self.backend = backend
        self.fallback_enabled = fallback_enabled

    async def increment(self, listing_id: str, counter_type: CounterType) -> bool:
        """Increment a counter for a listing.

        Args:
            listing_id: The listing id
            counter_type: Which counter to bump

        Returns:
            True if the increment was stored, False if it was dropped
        """
        counter_type = CounterType(counter_type)
        try:
            await self.backend.call(
                'increment_listing_counter',
                listing_id=listing_id,
                counter_type=counter_type.value
            )
            return True
        except BackendError as e:
            if not self.fallback_enabled:
                logger.warning(f"increment_listing_counter failed, {counter_type.value} not counted: {e}")
                return False
            logger.warning(f"increment_listing_counter failed, falling back: {e}")

        try:
            return await self._increment_guarded(listing_id, counter_type)
        except BackendError as e:
            logger.warning(f"Fallback increment of {counter_type.value} for {listing_id} failed: {e}")
            return False

    async def _increment_guarded(self, listing_id: str, counter_type: CounterType) -> bool:
        row = await self.backend.select_one(
            'listings',
            columns=('id', 'analytics'),
            filters={'id': listing_id}
        )
        if not row:
            logger.warning(f"Cannot count {counter_type.value}: listing {listing_id} not found")
            return False

        current: Optional[Dict[str, Any]] = row.get('analytics')
        key = COUNTER_KEYS[counter_type]
        updated = dict(current or {})
        try:
            updated[key] = int(updated.get(key) or 0) + 1
        except (TypeError, ValueError):
            updated[key] = 1

        # Only write if nobody changed the bag since we read it
        rows = await self.backend.update(
            'listings',
            {'analytics': updated},
            filters={'id': listing_id, 'analytics': current}
        )
        if not rows:
            logger.warning(
                f"Concurrent update of analytics for {listing_id}, {counter_type.value} not counted"
            )
            return False
        return True
