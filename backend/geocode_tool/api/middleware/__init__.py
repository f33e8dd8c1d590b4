"""Pipeline stages — pure ASGI middleware, one module per stage.

Invariants:
    - Each stage passes non-HTTP scopes (lifespan) straight through
    - Ordering lives in api/pipeline.py, never in the stages themselves
"""
