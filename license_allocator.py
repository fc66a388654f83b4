import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from provision_models import LICENSE_E1, LICENSE_E3, TEAMS

logger = logging.getLogger(__name__)


@dataclass
class LicensePool:
    name: str
    sku_id: str
    available: int = 0

    def __post_init__(self):
        if self.available < 0:
            self.available = 0


@dataclass
class Grant:
    granted: bool
    sku_ids: List[str] = field(default_factory=list)


class LicenseAllocator:
    """In-memory seat counters for the E1, E3 and Teams pools.

    Every grant takes one seat from the base pool (E1 or E3) and one from
    the Teams pool. Counters only go down, and never below zero.
    """

    COMBOS = {
        LICENSE_E1: (LICENSE_E1, TEAMS),
        LICENSE_E3: (LICENSE_E3, TEAMS),
    }

    def __init__(self, pools: Iterable[LicensePool]):
        self.pools: Dict[str, LicensePool] = {p.name: p for p in pools}
        self._lock = threading.Lock()

    @classmethod
    def from_subscriptions(cls, subscriptions: List[dict], sku_part_numbers: Dict[str, str]) -> "LicenseAllocator":
        """Build pools from list_license_pools() output.

        sku_part_numbers maps pool name (E1/E3/Teams) to a tenant SKU part number.
        """
        by_part = {s.get("skuPartNumber"): s for s in subscriptions}
        pools = []
        for name, part in sku_part_numbers.items():
            sub = by_part.get(part)
            if sub is None:
                logger.warning(f"SKU {part} ({name}) not found in tenant subscriptions; pool is empty")
                pools.append(LicensePool(name, "", 0))
                continue
            available = int(sub.get("totalUnits", 0)) - int(sub.get("consumedUnits", 0))
            pools.append(LicensePool(name, sub.get("skuId", ""), max(available, 0)))
        return cls(pools)

    def handles(self, license_type: str) -> bool:
        return license_type in self.COMBOS

    def try_allocate(self, license_type: str) -> Grant:
        combo = self.COMBOS.get(license_type)
        if combo is None:
            return Grant(False)
        with self._lock:
            pools: List[Optional[LicensePool]] = [self.pools.get(name) for name in combo]
            if any(p is None or p.available <= 0 for p in pools):
                return Grant(False)
            for p in pools:
                p.available -= 1
            return Grant(True, [p.sku_id for p in pools])

    def sku_ids_for(self, license_type: str) -> List[str]:
        """SKU ids a grant of license_type would assign, without taking seats."""
        combo = self.COMBOS.get(license_type, ())
        return [self.pools[name].sku_id for name in combo if name in self.pools]

    def available(self, name: str) -> int:
        pool = self.pools.get(name)
        return pool.available if pool else 0

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return {name: p.available for name, p in self.pools.items()}
