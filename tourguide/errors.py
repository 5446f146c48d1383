"""Exceptions raised inside the guidance subsystem."""


class GuidanceError(Exception):
    """Base class for recoverable guidance failures"""


class InvalidConfiguration(GuidanceError):
    """Unknown guidance type, bad settings key, or missing fields for a mode"""


class RouteComputationFailure(GuidanceError):
    """The routing provider returned no usable geometry"""


class NoReconnectionPoint(GuidanceError):
    """No point on the main route to reconnect to"""


class NavigationStartFailure(GuidanceError):
    """The navigation player refused to start a plan"""
