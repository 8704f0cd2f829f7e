"""Domain exceptions raised by the service layer."""


class NovusError(Exception):
    """Base class for all service errors."""


class ResolutionError(NovusError):
    """No instrument, ticker or scheme code could be resolved."""


class MarketDataError(NovusError):
    """Every candidate symbol or data source failed."""


class SipError(NovusError):
    """SIP parameters are invalid or the scheme has no NAV data."""


class StateStoreError(NovusError):
    """Portfolio state could not be loaded or saved."""


class AssistantError(NovusError):
    """The AI service failed or returned unusable content."""


class TrendCancelled(NovusError):
    """A newer trend computation superseded this one."""
