"""Expiry bookkeeping for conditions that should not be re-notified."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Optional

FLEET_DEGRADED_KEY = "fleet-degraded"


class SuppressionStore:
    """Keyed expiry timestamps for one condition class."""

    def __init__(self) -> None:
        self._expiries: Dict[str, datetime] = {}

    def is_suppressed(self, key: str, now: datetime) -> bool:
        expiry = self._expiries.get(key)
        return expiry is not None and now <= expiry

    def suppress(self, key: str, now: datetime, window: timedelta) -> datetime:
        expiry = now + window
        self._expiries[key] = expiry
        return expiry

    def clear(self, key: str) -> bool:
        return self._expiries.pop(key, None) is not None

    def expiry(self, key: str) -> Optional[datetime]:
        return self._expiries.get(key)

    def active_count(self, now: datetime) -> int:
        return sum(1 for expiry in self._expiries.values() if now < expiry)

    def __contains__(self, key: object) -> bool:
        return key in self._expiries

    def __len__(self) -> int:
        return len(self._expiries)


class SuppressionLedger:
    """
    Two independent stores: one for the fleet-wide degraded alert (single
    aggregate key) and one keyed by provider identifier.

    Entries are deleted when the underlying condition clears so a later
    breach is reported promptly. Failed pairs never go through the ledger.
    """

    def __init__(self) -> None:
        self.instances = SuppressionStore()
        self.providers = SuppressionStore()

    def suppressed_count(self, now: datetime) -> int:
        return self.instances.active_count(now) + self.providers.active_count(now)
