"""
Geography resolution for GPCI adjustment.

Precedence:
  1. ZIP      → locality (crosswalk, direct ZIP, 3-digit prefix)  LOCALLY_ADJUSTED
  2. ZIP      → state → state average                             STATE_ESTIMATE
  3. State    → state average                                     STATE_ESTIMATE
  4. Nothing  → national defaults (GPCI 1.0 / 1.0 / 1.0)          NATIONAL_ESTIMATE

Resolved once per analysis and shared by every line.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from billbench.services.reference.store import (
    FeeScheduleStore,
    LocalityFactors,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)


class LocalityConfidence(str, Enum):
    LOCALLY_ADJUSTED = "locally_adjusted"
    STATE_ESTIMATE = "state_estimate"
    NATIONAL_ESTIMATE = "national_estimate"


VALID_STATES = frozenset({
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "DC", "FL",
    "GA", "HI", "ID", "IL", "IN", "IA", "KS", "KY", "LA", "ME",
    "MD", "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH",
    "NJ", "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "PR",
    "RI", "SC", "SD", "TN", "TX", "UT", "VT", "VA", "VI", "WA",
    "WV", "WI", "WY",
})


@dataclass(frozen=True)
class Geography:
    confidence: LocalityConfidence
    factors: Optional[LocalityFactors] = None  # None → national defaults
    zip_code: Optional[str] = None
    state: Optional[str] = None
    notes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def label(self) -> str:
        if self.factors is None:
            return "National average"
        return self.factors.locality_name

    @classmethod
    def national(cls, *notes: str) -> "Geography":
        return cls(confidence=LocalityConfidence.NATIONAL_ESTIMATE, notes=tuple(notes))


def normalize_zip(value: Optional[str]) -> Optional[str]:
    """ZIP or ZIP+4 → 5-digit ZIP; anything else → None."""
    if not value:
        return None
    digits = re.sub(r"\D", "", str(value))[:5]
    return digits if len(digits) == 5 else None


def normalize_state(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = str(value).strip().upper()
    return cleaned if cleaned in VALID_STATES else None


class GeographyResolver:
    """
    Usage:
        geography = GeographyResolver(store).resolve(zip_code="10001", state=None)
    """

    def __init__(self, store: FeeScheduleStore):
        self.store = store

    def resolve(self, zip_code: Optional[str] = None, state: Optional[str] = None) -> Geography:
        zip5 = normalize_zip(zip_code)
        state_code = normalize_state(state)
        notes: list[str] = []

        if zip_code and zip5 is None:
            notes.append(f"ZIP code {zip_code!r} is not a valid 5-digit ZIP; ignored")
        if state and state_code is None:
            notes.append(f"State {state!r} is not a recognised US state code; ignored")

        try:
            if zip5:
                factors = self.store.locality_for_zip(zip5)
                if factors is not None:
                    return Geography(
                        confidence=LocalityConfidence.LOCALLY_ADJUSTED,
                        factors=factors,
                        zip_code=zip5,
                        state=factors.state or state_code,
                        notes=tuple(notes),
                    )
                zip_state = self.store.state_for_zip(zip5)
                if zip_state:
                    state_code = zip_state
                notes.append(f"No locality found for ZIP {zip5}")

            if state_code:
                factors = self.store.locality_for_state(state_code)
                if factors is not None:
                    notes.append(f"Using {state_code} state-average geographic adjustment")
                    return Geography(
                        confidence=LocalityConfidence.STATE_ESTIMATE,
                        factors=factors,
                        zip_code=zip5,
                        state=state_code,
                        notes=tuple(notes),
                    )
        except StoreUnavailableError as exc:
            logger.warning("Locality lookup unavailable, using national defaults: %s", exc)
            notes.append("Locality data unavailable; using national average")
            return Geography(
                confidence=LocalityConfidence.NATIONAL_ESTIMATE,
                zip_code=zip5,
                state=state_code,
                notes=tuple(notes),
            )

        notes.append("No location match; using national average (no geographic adjustment)")
        return Geography(
            confidence=LocalityConfidence.NATIONAL_ESTIMATE,
            zip_code=zip5,
            state=state_code,
            notes=tuple(notes),
        )
