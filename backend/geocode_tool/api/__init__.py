"""API Layer — request pipeline, routes and error handlers.

Invariants:
    - Routes registered explicitly in main.py (no auto-discovery)
    - All JSON responses use the {data, error} envelope
"""
