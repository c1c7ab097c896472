from __future__ import annotations

from dataclasses import dataclass

# Target field -> header synonyms. Order matters: fields are resolved top to bottom.
FIELD_PATTERNS: dict[str, tuple[str, ...]] = {
    "ilist_id": ("id", "property_id", "ilist_id", "property id"),
    "title": ("title", "name", "property_name", "property name"),
    "description": ("description", "desc", "details", "property_description"),
    "price": ("price", "cost", "amount", "value"),
    "sqr_meters": ("sqr_meters", "size", "area", "square_meters", "sq_m", "sqm"),
    "rooms": ("rooms", "bedrooms", "bed_rooms", "room_count"),
    "bathrooms": ("bathrooms", "bath", "bathroom_count", "baths"),
    "area_id": ("area", "location", "area_id", "neighborhood"),
    "subarea_id": ("subarea", "sub_area", "subarea_id", "district"),
    "latitude": ("lat", "latitude", "y", "coord_y"),
    "longitude": ("lng", "lon", "longitude", "x", "coord_x"),
    "postal_code": ("postal_code", "zip", "postcode", "zip_code"),
    "building_year": ("year", "built_year", "construction_year", "building_year"),
    "energy_class_id": ("energy_class", "energy", "efficiency"),
    "custom_code": ("code", "ref", "reference", "custom_code"),
    "partner_name": ("agent", "partner", "contact_name", "agent_name"),
    "partner_email": ("email", "agent_email", "contact_email"),
    "partner_phone": ("phone", "tel", "telephone", "agent_phone", "contact_phone"),
}

MAPPABLE_FIELDS: frozenset[str] = frozenset(
    {
        "ilist_id",
        "title",
        "description",
        "property_type",
        "aim_id",
        "price",
        "sqr_meters",
        "rooms",
        "bathrooms",
        "area_id",
        "subarea_id",
        "energy_class_id",
        "building_year",
        "latitude",
        "longitude",
        "postal_code",
        "custom_code",
        "partner_name",
        "partner_email",
        "partner_phone",
    }
)


@dataclass(frozen=True)
class ImportField:
    id: str
    name: str
    required: bool = False


IMPORT_FIELDS: tuple[ImportField, ...] = (
    ImportField("ilist_id", "iList ID"),
    ImportField("title", "Property Title", required=True),
    ImportField("description", "Description"),
    ImportField("price", "Price (€)", required=True),
    ImportField("sqr_meters", "Size (m²)"),
    ImportField("rooms", "Rooms"),
    ImportField("bathrooms", "Bathrooms"),
    ImportField("area_id", "Area ID"),
    ImportField("subarea_id", "Subarea ID"),
    ImportField("energy_class_id", "Energy Class ID"),
    ImportField("building_year", "Building Year"),
    ImportField("latitude", "Latitude"),
    ImportField("longitude", "Longitude"),
    ImportField("postal_code", "Postal Code"),
    ImportField("partner_name", "Agent Name"),
    ImportField("partner_email", "Agent Email"),
    ImportField("partner_phone", "Agent Phone"),
)

CSV_TEMPLATE = "\n".join(
    [
        "title,price,sqr_meters,rooms,bathrooms,area_id,description",
        "Beautiful Apartment,250000,85,2,1,2011,Modern apartment in great location",
        "Luxury Villa,590000,290,4,3,2208,Stunning villa with sea view",
    ]
)


def suggest_mapping(headers: list[str]) -> dict[str, str]:
    """
    Best-guess target field -> source header assignment.

    A header matches a synonym when either string contains the other
    (case-insensitive). The first matching header wins per field; the same
    header may be suggested for several fields.
    """
    normalized = [h.lower().strip() for h in headers]
    mapping: dict[str, str] = {}

    for field_id, patterns in FIELD_PATTERNS.items():
        for index, header in enumerate(normalized):
            if not header:
                continue
            if any(pattern in header or header in pattern for pattern in patterns):
                mapping[field_id] = headers[index]
                break

    return mapping


def clean_mapping(raw: dict[str, str | None] | None) -> dict[str, str]:
    """Drop unknown target fields and unassigned entries from a submitted mapping."""
    if not raw:
        return {}
    return {
        field_id: column
        for field_id, column in raw.items()
        if field_id in MAPPABLE_FIELDS and isinstance(column, str) and column.strip()
    }
