"""Infrastructure Layer — external service clients and cross-cutting concerns.

Invariants:
    - All external calls wrapped with retry/timeout/error mapping
    - Only core/errors.py and core result types are imported from core/
"""
