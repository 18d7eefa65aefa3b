"""Availability preferences, slot generation, booking allocation and meeting lifecycle."""
