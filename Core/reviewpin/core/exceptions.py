class TrackingError(RuntimeError):
    """Base error for element tracking."""


class LocatorInvalid(TrackingError):
    """Raised when a stored CSS selector or XPath is malformed."""


class ObserverSetupFailure(TrackingError):
    """Raised when the page cannot create the observers tracking depends on."""


class CaptureRejected(TrackingError):
    """Raised when the clicked element belongs to the widget itself."""


class TrackerStateError(TrackingError):
    """Raised when a tracker is driven through an invalid lifecycle transition."""
