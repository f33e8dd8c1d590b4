"""Route Modules — one file per resource/concern.

Invariants:
    - Each module defines its own APIRouter; the API prefix is applied in main.py
    - Routes never build error responses themselves, they raise typed errors
"""
