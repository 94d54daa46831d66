"""
BenchmarkPolicy — an immutable snapshot of the benchmark thresholds.

Engine components take a policy argument rather than reading `settings`
directly, so tests can tighten or relax a threshold without touching the
environment.
"""

from dataclasses import dataclass
from decimal import Decimal

from billbench.settings import settings


@dataclass(frozen=True)
class BenchmarkPolicy:
    coverage_threshold: Decimal = Decimal("0.70")
    total_mismatch_tolerance: Decimal = Decimal("0.03")
    tiny_total_floor: Decimal = Decimal("1.00")
    small_total_ratio: Decimal = Decimal("0.5")
    min_items_for_derived_total: int = 2
    medium_confidence_item_count: int = 3
    default_conversion_factor: Decimal = Decimal("34.6062")
    fair_multiple_ceiling: Decimal = Decimal("2.0")
    high_multiple_ceiling: Decimal = Decimal("3.0")

    @classmethod
    def from_settings(cls) -> "BenchmarkPolicy":
        return cls(
            coverage_threshold=Decimal(str(settings.coverage_threshold)),
            total_mismatch_tolerance=Decimal(str(settings.total_mismatch_tolerance)),
            tiny_total_floor=Decimal(str(settings.tiny_total_floor)),
            small_total_ratio=Decimal(str(settings.small_total_ratio)),
            min_items_for_derived_total=settings.min_items_for_derived_total,
            medium_confidence_item_count=settings.medium_confidence_item_count,
            default_conversion_factor=Decimal(str(settings.default_conversion_factor)),
            fair_multiple_ceiling=Decimal(str(settings.fair_multiple_ceiling)),
            high_multiple_ceiling=Decimal(str(settings.high_multiple_ceiling)),
        )
