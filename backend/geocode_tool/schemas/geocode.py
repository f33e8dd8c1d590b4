"""Geocode Schemas — Pydantic models with field-level validation for the geocode endpoint.

Invariants:
    - GeocodeRequest.queries: 1-1000 entries, each stripped and non-empty
    - lang follows the provider's xx_YY locale form
"""

from pydantic import BaseModel, Field, field_validator


class GeocodeRequest(BaseModel):
    """Batch of free-form address queries, as sent by the CSV/GeoJSON views."""
    queries: list[str] = Field(min_length=1, max_length=1000)
    lang: str | None = Field(None, pattern=r"^[a-z]{2}_[A-Z]{2}$")

    @field_validator("queries")
    @classmethod
    def strip_queries(cls, v: list[str]) -> list[str]:
        stripped = [q.strip() for q in v]
        if any(not q for q in stripped):
            raise ValueError("queries cannot contain empty or whitespace entries")
        return stripped
