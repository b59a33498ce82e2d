"""French property due-diligence lookups over public open-data APIs."""

__version__ = "1.0.0"
