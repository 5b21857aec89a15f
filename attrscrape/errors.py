"""Exception hierarchy used inside the collector."""


class CollectorError(Exception):
    """Base class for collector errors."""
    pass


class ConfigurationError(CollectorError):
    """Malformed, incomplete or unknown configuration block."""
    pass


class DiscoveryError(CollectorError):
    """The endpoint rejected an object pattern query."""
    pass


class ResolutionError(CollectorError):
    """An attribute, field or table row could not be resolved."""
    pass


class CoercionError(CollectorError):
    """A resolved value could not be converted into a metric value."""
    pass


class ConnectionUnusableError(CollectorError):
    """The connection to the endpoint failed and must be re-established."""
    pass
