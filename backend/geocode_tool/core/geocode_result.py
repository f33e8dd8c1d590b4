"""Geocode Result — normalizes the provider's GeoObjectCollection into flat results.

Invariants:
    - point is (longitude, latitude), the order the map widget consumes
    - An empty featureMember list is a normal "not found", never an error
    - A payload without the response/GeoObjectCollection skeleton, or with
      a non-object where an object belongs, is malformed
"""

from dataclasses import dataclass, asdict


class MalformedProviderPayload(ValueError):
    """Provider answered 200 but the body is not a geocoder response."""


@dataclass(frozen=True)
class GeocodeResult:
    query: str
    found: bool
    point: tuple[float, float] | None = None
    address: str | None = None
    precision: str | None = None
    kind: str | None = None

    def to_dict(self) -> dict:
        result = asdict(self)
        result["point"] = list(self.point) if self.point else None
        return result


def parse_provider_response(query: str, payload: dict) -> GeocodeResult:
    """Take the best (first) match from a provider payload."""
    response = _object(_object(payload, "payload").get("response"), "response")
    collection = _object(
        response.get("GeoObjectCollection"), "response.GeoObjectCollection",
    )
    members = collection.get("featureMember") or []
    if not isinstance(members, list):
        raise MalformedProviderPayload("featureMember is not a list")
    if not members:
        return GeocodeResult(query=query, found=False)

    member = _object(members[0], "featureMember[0]")
    geo = _object(member.get("GeoObject") or {}, "GeoObject")
    meta_property = _object(geo.get("metaDataProperty") or {}, "metaDataProperty")
    meta = _object(meta_property.get("GeocoderMetaData") or {}, "GeocoderMetaData")
    return GeocodeResult(
        query=query,
        found=True,
        point=parse_pos(_object(geo.get("Point") or {}, "Point").get("pos")),
        address=meta.get("text") or geo.get("name"),
        precision=meta.get("precision"),
        kind=meta.get("kind"),
    )


def _object(value: object, where: str) -> dict:
    if not isinstance(value, dict):
        raise MalformedProviderPayload(f"{where} is not an object")
    return value


def parse_pos(pos: str | None) -> tuple[float, float]:
    """Parse a "lon lat" position string."""
    if not isinstance(pos, str) or not pos:
        raise MalformedProviderPayload("GeoObject has no Point.pos")
    parts = pos.split()
    if len(parts) != 2:
        raise MalformedProviderPayload(f"unexpected Point.pos {pos!r}")
    try:
        lon, lat = float(parts[0]), float(parts[1])
    except ValueError:
        raise MalformedProviderPayload(f"unexpected Point.pos {pos!r}")
    return lon, lat
