from typing import Any, Dict, List, Optional

import requests

from .config import settings
from .logger import get_logger
from .schemas import Suggestion
from .suggest import designated_for, suggest

logger = get_logger(__name__)


class KioskClient:
    """HTTP client for the kiosk page.

    A kiosk serves one floor (the default floor unless told otherwise). It
    fetches that floor's slot snapshot, runs the suggestion engine locally and
    keeps the current suggestion as its own view state. Parking with a held
    suggestion sends it as the preferred slot and clears it afterwards.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, floor_number: Optional[int] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.floor_number = settings.DEFAULT_FLOOR if floor_number is None else floor_number
        self.suggestion: Optional[Suggestion] = None

    def _params(self, **params: Any) -> Dict[str, Any]:
        params.setdefault("floorNumber", self.floor_number)
        return {k: v for k, v in params.items() if v is not None}

    def fetch_slots(self) -> List[Dict[str, Any]]:
        resp = requests.get(f"{self.base_url}/parking/slots", params=self._params(), timeout=self.timeout)
        resp.raise_for_status()
        # slots from another floor would skew congestion for matching numbers
        return [s for s in resp.json() if s.get("floorNumber", self.floor_number) == self.floor_number]

    def suggest(self, vehicle_type: str) -> Optional[Suggestion]:
        self.suggestion = suggest(vehicle_type, self.fetch_slots(), eligible=designated_for(vehicle_type))
        if self.suggestion is None:
            logger.info("No suggestion available for %s on floor %s", vehicle_type, self.floor_number)
        return self.suggestion

    def clear_suggestion(self) -> None:
        self.suggestion = None

    def park(self, license_plate: str, vehicle_type: str) -> Dict[str, Any]:
        preferred = self.suggestion.slot_number if self.suggestion is not None else None
        resp = requests.post(
            f"{self.base_url}/parking/park",
            params=self._params(licensePlate=license_plate, vehicleType=vehicle_type, preferredSlot=preferred),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        self.clear_suggestion()
        return resp.json()

    def exit_by_slot(self, slot_number: int) -> Dict[str, Any]:
        resp = requests.post(
            f"{self.base_url}/parking/exit-by-slot",
            params=self._params(slotNumber=slot_number),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()
