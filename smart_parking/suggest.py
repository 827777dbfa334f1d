from collections.abc import Mapping
from typing import Callable, Iterable, List, Optional, Tuple

import numpy as np

from .logger import get_logger
from .schemas import Slot, Suggestion, VehicleType

logger = get_logger(__name__)

CONGESTION_RADIUS = 2
ROW_LENGTH = 5
FALLBACK_REASON = "available slot"


def _as_int(value: object) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    if isinstance(value, (bool, int)):
        return bool(value)
    return False


def _normalize(entry: object) -> Optional[Tuple[int, bool]]:
    # (slot_number, occupied); entries without a usable slot number are dropped
    if isinstance(entry, Slot):
        number, occupied = entry.slot_number, entry.occupied
    elif isinstance(entry, Mapping):
        raw = entry.get("slotNumber", entry.get("slot_number"))
        number, occupied = _as_int(raw), _as_bool(entry.get("occupied"))
    else:
        return None
    if number is None or number <= 0:
        return None
    return number, occupied


def score_slot(
    slot_number: int, vehicle_type: VehicleType, occupied_numbers: Iterable[int]
) -> Tuple[int, List[str]]:
    """Score one available slot against the occupied slots around it.

    - Low slot numbers are closest to the entrance.
    - Fewer occupied neighbours (within two numbers) is better.
    - Large vehicles like the far end, cars the middle band, bikes fit anywhere.
    - The middle position of each row of five gets a bonus.
    """
    reasons: List[str] = []

    if slot_number <= 5:
        proximity = 30
        reasons.append("nearest to entrance")
    elif slot_number <= 10:
        proximity = 20
    else:
        proximity = 10

    nearby_occupied = sum(
        1 for n in occupied_numbers if n != slot_number and abs(n - slot_number) <= CONGESTION_RADIUS
    )
    congestion = max(0, 25 - 5 * nearby_occupied)
    if nearby_occupied == 0:
        reasons.append("isolated area")
    elif nearby_occupied <= 1:
        reasons.append("low congestion")

    fit = 15
    if vehicle_type.is_large:
        if slot_number >= 15:
            fit = 25
            reasons.append("optimal for large vehicle")
    elif vehicle_type is VehicleType.BIKE:
        fit = 20
        reasons.append("suitable for bike")
    elif vehicle_type is VehicleType.CAR:
        if 10 <= slot_number <= 15:
            fit = 25
            reasons.append("optimal for car")

    position = 0
    row_position = slot_number % ROW_LENGTH or ROW_LENGTH
    if row_position == 3:
        position = 10
        reasons.append("central position")

    return proximity + congestion + fit + position, reasons or [FALLBACK_REASON]


def designated_for(vehicle_type: object) -> Callable[[object], bool]:
    """Predicate accepting slots designated for the vehicle type, or with no designation."""
    vtype = VehicleType.parse(vehicle_type)

    def _eligible(entry: object) -> bool:
        if isinstance(entry, Mapping):
            designation = entry.get("slotType", entry.get("slot_type"))
        else:
            designation = getattr(entry, "slot_type", None)
        return designation is None or VehicleType.parse(designation) is vtype

    return _eligible


def suggest(
    vehicle_type: object,
    slots: Optional[Iterable[object]],
    eligible: Optional[Callable[[object], bool]] = None,
) -> Optional[Suggestion]:
    """Pick the best available slot for a vehicle type from a slot snapshot.

    Returns None when there is nothing to suggest. Ties go to the slot that
    appears first in the snapshot. ``eligible`` narrows the candidates; all
    slots still count towards congestion.
    """
    if not slots:
        return None

    entries = []
    for slot in slots:
        normalized = _normalize(slot)
        if normalized is not None:
            entries.append((slot, *normalized))

    available = [
        number for slot, number, occupied in entries if not occupied and (eligible is None or eligible(slot))
    ]
    if not available:
        return None

    vtype = VehicleType.parse(vehicle_type)
    occupied_numbers = [number for _, number, occupied in entries if occupied]

    scored = [score_slot(number, vtype, occupied_numbers) for number in available]
    best_idx = int(np.argmax([score for score, _ in scored]))
    score, reasons = scored[best_idx]

    suggestion = Suggestion(
        slot_number=available[best_idx],
        score=score,
        reasons=reasons,
        reason_text=f"Suggested because {reasons[0]}",
    )
    logger.debug("Suggested slot %s for %s (score=%s, reasons=%s)", suggestion.slot_number, vtype.value, score, reasons)
    return suggestion
