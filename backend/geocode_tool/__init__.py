"""Geocode Tool — backend for the batch geocoding map tool.

Invariants:
    - Package root contains no executable code (import side-effects prohibited)
"""
