"""Drink Tracker: live drink counting, markers and prediction awards for a bar night."""

__version__ = "0.3.0"
