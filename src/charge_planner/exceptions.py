class ChargePlannerError(Exception):
    """Base exception for charge planning errors."""


class InvalidPlanInputError(ChargePlannerError):
    """Raised when a vehicle profile, route or planner input is malformed."""


class ExternalServiceError(ChargePlannerError):
    """Raised when an upstream API call fails."""


class RateLimitedError(ExternalServiceError):
    """Raised when the station registry answers with HTTP 429."""


class StationRegistryUnavailableError(ExternalServiceError):
    """Raised when a registry query exhausted its retry budget."""


class NoRouteFoundError(ChargePlannerError):
    """Raised when a drivable route cannot be generated."""
