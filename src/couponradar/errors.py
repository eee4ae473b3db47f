class CouponRadarError(Exception):
    pass


class LocationError(CouponRadarError):
    """A platform location request did not produce a coordinate."""


class PermissionDenied(LocationError):
    """The user (or platform) refused location access."""


class AcquisitionTimeout(LocationError):
    """No fix arrived within the acquisition timeout."""


class LocationUnavailable(LocationError):
    """The platform has no location capability or could not compute a fix."""


class SubscriptionError(CouponRadarError):
    """The continuous tracking stream failed after permission had been granted."""


class NotificationPermissionDenied(CouponRadarError):
    pass


class PreferenceStorageError(CouponRadarError):
    """Durable preference storage could not be read or written."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key
