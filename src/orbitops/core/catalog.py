"""Catalog snapshots: the immutable view of tracked objects a scan works on."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from orbitops.core.elements import OrbitalElements

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogSnapshot:
    """An ordered, immutable set of orbital elements.

    A catalog refresh produces a new snapshot with a higher ``version``;
    snapshots already handed to a running scan are never modified.

    Attributes:
        elements: Elements in ingestion order.
        version: Monotonic refresh counter.
        refreshed_at: Unix time the snapshot was taken.
    """

    elements: tuple[OrbitalElements, ...] = ()
    version: int = 0
    refreshed_at: float = 0.0
    _by_id: dict[int, OrbitalElements] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "elements", tuple(self.elements))
        by_id: dict[int, OrbitalElements] = {}
        for elem in self.elements:
            if elem.norad_id in by_id:
                raise ValueError(f"Duplicate NORAD id {elem.norad_id} in catalog")
            by_id[elem.norad_id] = elem
        object.__setattr__(self, "_by_id", by_id)

    @classmethod
    def from_elements(
        cls,
        elements: Iterable[OrbitalElements],
        version: int = 0,
        refreshed_at: float | None = None,
    ) -> CatalogSnapshot:
        return cls(
            elements=tuple(elements),
            version=version,
            refreshed_at=time.time() if refreshed_at is None else refreshed_at,
        )

    def replace(self, elements: Iterable[OrbitalElements], refreshed_at: float | None = None) -> CatalogSnapshot:
        """Wholesale replacement producing the next version."""
        return CatalogSnapshot.from_elements(elements, self.version + 1, refreshed_at)

    def get(self, norad_id: int) -> OrbitalElements:
        try:
            return self._by_id[norad_id]
        except KeyError:
            raise KeyError(f"NORAD {norad_id} not in catalog (version {self.version})") from None

    def __contains__(self, norad_id: object) -> bool:
        return norad_id in self._by_id

    def __iter__(self) -> Iterator[OrbitalElements]:
        return iter(self.elements)

    def __len__(self) -> int:
        return len(self.elements)

    @property
    def ids(self) -> list[int]:
        return [e.norad_id for e in self.elements]


def merge_elements(
    existing: Iterable[OrbitalElements],
    updates: Iterable[OrbitalElements],
) -> list[OrbitalElements]:
    """Merge element sets by NORAD id, keeping the newest epoch.

    Returns the merged elements ordered by NORAD id.
    """
    merged: dict[int, OrbitalElements] = {}
    for elem in existing:
        merged[elem.norad_id] = elem
    replaced = 0
    for elem in updates:
        current = merged.get(elem.norad_id)
        if current is None or current.epoch < elem.epoch:
            if current is not None:
                replaced += 1
            merged[elem.norad_id] = elem
    logger.debug("merge_elements: %d objects, %d replaced by newer epochs", len(merged), replaced)
    return [merged[k] for k in sorted(merged)]


def hours_since_epoch(elements: OrbitalElements, reference_time: float | None = None) -> float:
    """Age of the elements in hours relative to ``reference_time`` (default: now)."""
    if reference_time is None:
        reference_time = time.time()
    return (reference_time - elements.epoch) / 3600.0


def filter_stale(
    elements: Iterable[OrbitalElements],
    max_age_days: float = 3.0,
    reference_time: float | None = None,
) -> list[OrbitalElements]:
    """Drop elements whose epoch is more than ``max_age_days`` from the reference time."""
    if reference_time is None:
        reference_time = time.time()

    elements = list(elements)
    cutoff_hours = max_age_days * 24.0
    fresh = [e for e in elements if abs(hours_since_epoch(e, reference_time)) <= cutoff_hours]

    logger.debug("filter_stale: %d/%d elements within %.1f days", len(fresh), len(elements), max_age_days)
    return fresh
