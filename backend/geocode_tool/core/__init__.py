"""Core Layer — pure logic, no IO, no async.

Invariants:
    - No module in core/ imports from api/, infrastructure/ or runtime/
    - No framework imports: FastAPI, Starlette and httpx stay outside core/
"""
