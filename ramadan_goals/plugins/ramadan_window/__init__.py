"""Ramadan window: validation, AlAdhan resolution and the resolution state machine."""
