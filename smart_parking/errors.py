class ParkingError(Exception):
    """Base class for domain failures; carries the HTTP status used by the API."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SlotNotFound(ParkingError):
    status_code = 404


class FloorNotFound(ParkingError):
    status_code = 404


class NoActiveRecord(ParkingError):
    pass


class NoSlotAvailable(ParkingError):
    pass


class SlotOccupied(ParkingError):
    pass


class VehicleTypeMismatch(ParkingError):
    pass


class DuplicateResource(ParkingError):
    pass


class InvalidRequest(ParkingError):
    pass


class AccountInactive(ParkingError):
    status_code = 403
