"""Distance-ranked provider matching with progressive radius widening."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from engagement_service.logging import get_logger
from engagement_service.services.lifecycle import VerificationStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from engagement_service.services.engagement_store import EngagementStore

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres between two points in decimal degrees."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def approximate_distance(distance_km: float) -> str:
    """Coarse distance label that does not reveal the exact location."""
    return f"~{round(distance_km)}km away"


@dataclass(frozen=True)
class Candidate:
    """A provider within matching range of a task."""

    provider_id: str
    user_id: str
    distance_km: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "user_id": self.user_id,
            "distance_km": round(self.distance_km, 2),
            "approximate_distance": approximate_distance(self.distance_km),
        }


def match(
    task: dict[str, Any],
    providers: Iterable[dict[str, Any]],
    radius_km: float,
) -> list[Candidate]:
    """
    Rank providers within radius_km of the task.

    Only verified, available providers of the task's category with
    coordinates are considered. A task without coordinates matches nobody.
    Ties on distance are broken by provider_id.
    """
    task_lat = task.get("latitude")
    task_lon = task.get("longitude")
    if task_lat is None or task_lon is None:
        return []

    candidates: list[Candidate] = []
    for provider in providers:
        if provider.get("verification_status") != VerificationStatus.VERIFIED:
            continue
        if not provider.get("available", True):
            continue
        if provider.get("category_id") != task.get("category_id"):
            continue
        lat = provider.get("latitude")
        lon = provider.get("longitude")
        if lat is None or lon is None:
            continue
        distance = haversine_km(task_lat, task_lon, lat, lon)
        if distance <= radius_km:
            candidates.append(
                Candidate(
                    provider_id=str(provider["provider_id"]),
                    user_id=str(provider["user_id"]),
                    distance_km=distance,
                )
            )

    candidates.sort(key=lambda candidate: (candidate.distance_km, candidate.provider_id))
    return candidates


class GeoMatcher:
    """Read-only query over current provider state."""

    def __init__(
        self,
        store: EngagementStore,
        radius_steps_km: Sequence[float],
        min_candidates: int,
    ) -> None:
        if not radius_steps_km:
            msg = "radius_steps_km must contain at least one radius"
            raise ValueError(msg)
        if min_candidates < 1:
            msg = "min_candidates must be at least 1"
            raise ValueError(msg)
        self._store = store
        self._radius_steps_km = sorted(radius_steps_km)
        self._min_candidates = min_candidates
        self._logger = get_logger(__name__)

    @property
    def max_radius_km(self) -> float:
        return self._radius_steps_km[-1]

    def _widen(
        self,
        origin: dict[str, Any],
        providers: Sequence[dict[str, Any]],
    ) -> tuple[list[Candidate], float]:
        candidates: list[Candidate] = []
        radius = self._radius_steps_km[0]
        for radius in self._radius_steps_km:
            candidates = match(origin, providers, radius)
            if len(candidates) >= self._min_candidates:
                break
        return candidates, radius

    def find_candidates(self, task: dict[str, Any]) -> tuple[list[Candidate], float]:
        """
        Match with progressive widening.

        Tries each configured radius in ascending order and stops at the
        first one yielding at least min_candidates. The largest radius is
        the cap. Returns the candidates and the radius that produced them.
        """
        providers = self._store.list_match_candidates(str(task["category_id"]))
        candidates, radius = self._widen(task, providers)

        self._logger.info(
            "Matched providers for task",
            extra={
                "task_id": task["task_id"],
                "radius_km": radius,
                "candidate_count": len(candidates),
            },
        )
        return candidates, radius

    def search(
        self,
        category_id: str,
        latitude: float,
        longitude: float,
        radius_km: float | None = None,
    ) -> tuple[list[Candidate], float]:
        """
        Providers of a category near a point, outside any task.

        A fixed radius_km is used as given (callers keep it within
        max_radius_km); without one the search widens like task matching.
        """
        origin = {"category_id": category_id, "latitude": latitude, "longitude": longitude}
        providers = self._store.list_match_candidates(category_id)
        if radius_km is None:
            return self._widen(origin, providers)
        return match(origin, providers, radius_km), radius_km
