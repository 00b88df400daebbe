"""Booking availability and capacity engine."""

__version__ = "0.1.0"
