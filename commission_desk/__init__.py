"""Commission Desk: monthly commission calculation and approval service."""

__version__ = "0.4.0"
