from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class RewardsSnapshot:
    redemptions: Dict[str, int]
    validations: Dict[str, int]
    offers: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "redemptions": dict(self.redemptions),
            "validations": dict(self.validations),
            "offers": dict(self.offers),
        }


class RewardsObservabilityStore:
    """Count redemption, validation and offer outcomes for dashboards."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._redemptions: Dict[str, int] = defaultdict(int)
        self._validations: Dict[str, int] = defaultdict(int)
        self._offers: Dict[str, int] = defaultdict(int)

    def record_redemption(self, outcome: str) -> None:
        with self._lock:
            self._redemptions[outcome] += 1

    def record_validation(self, outcome: str) -> None:
        with self._lock:
            self._validations[outcome] += 1

    def record_offer_redemption(self, outcome: str) -> None:
        with self._lock:
            self._offers[outcome] += 1

    def snapshot(self) -> RewardsSnapshot:
        with self._lock:
            return RewardsSnapshot(
                redemptions=dict(self._redemptions),
                validations=dict(self._validations),
                offers=dict(self._offers),
            )

    def reset(self) -> None:
        with self._lock:
            self._redemptions.clear()
            self._validations.clear()
            self._offers.clear()


_STORE = RewardsObservabilityStore()


def get_rewards_store() -> RewardsObservabilityStore:
    return _STORE


__all__ = ["get_rewards_store", "RewardsObservabilityStore", "RewardsSnapshot"]
