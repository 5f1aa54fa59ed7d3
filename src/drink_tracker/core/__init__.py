"""Core building blocks shared by every drink_tracker module."""
