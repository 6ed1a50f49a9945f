"""Property mapper adapter: CRM properties to XE.gr Unified Ad items.

Implements IPropertyMapper. The item payload is a plain dict in the shape
XeClient serializes: ``@``-prefixed keys are XML attributes, ``Field`` is a
list of Name/Value pairs, ``Asset`` a list of image references.
"""

import random
import re
import string
import time
from typing import Any

from ..domain.entities import AgentSettings, Property, format_phone
from ..domain.ports import IPropertyMapper

MAX_ASSETS = 30

# Unified Ad field names
FIELD_AREA = "item.area"
FIELD_CONSTRUCTION_YEAR = "item.construction_year"
FIELD_LEVEL = "item.level"
FIELD_ENERGY_CLASS = "item.energy_class"
FIELD_BEDROOMS = "item.bedrooms"
FIELD_BATHROOMS = "item.bathrooms"
FIELD_FLOORS_TOTAL = "item.floors_total"
FIELD_ELEVATOR = "item.elevator"
FIELD_HEATING_TYPE = "item.heating_type"
FIELD_FURNISHED = "item.furnished"
FIELD_CONDITION = "item.condition"
FIELD_PLOT_SIZE = "item.plot_area"
FIELD_ORIENTATION = "item.orientation"
FIELD_GEO_STREET = "geo.street_name"
FIELD_GEO_POSTCODE = "geo.postcode"
FIELD_GEO_AREA = "geo.area"
FIELD_GEO_CITY = "geo.city"
FIELD_GEO_MUNICIPALITY = "geo.municipality"
FIELD_GEO_LATITUDE = "geo.latitude"
FIELD_GEO_LONGITUDE = "geo.longitude"

# ============================================
# Type mappings
# ============================================

PROPERTY_TYPE_TO_XE: dict[str, str] = {
    "APARTMENT": "re_residence",
    "HOUSE": "re_residence",
    "MAISONETTE": "re_residence",
    "RESIDENTIAL": "re_residence",
    "VACATION": "re_residence",
    "RENTAL": "re_residence",
    "COMMERCIAL": "re_prof",
    "WAREHOUSE": "re_prof",
    "INDUSTRIAL": "re_prof",
    "LAND": "re_land",
    "PLOT": "re_land",
    "FARM": "re_land",
    "PARKING": "re_parking",
    "OTHER": "re_misc",
}

TRANSACTION_TYPE_TO_XE: dict[str, str] = {
    "SALE": "SELL.NORMAL",
    "RENTAL": "LET.NORMAL",
    "SHORT_TERM": "LET.NORMAL",
    "EXCHANGE": "SELL.EXCHANGE",
}

RENTAL_TRANSACTIONS = {"RENTAL", "SHORT_TERM"}

ENERGY_CLASS_TO_XE: dict[str, str] = {
    "A_PLUS": "A+",
    "A": "A",
    "B": "B",
    "C": "C",
    "D": "D",
    "E": "E",
    "F": "F",
    "G": "G",
    "H": "H",
    "IN_PROGRESS": "PENDING",
}

HEATING_TYPE_TO_XE: dict[str, str] = {
    "AUTONOMOUS": "autonomous",
    "CENTRAL": "central",
    "NATURAL_GAS": "natural_gas",
    "HEAT_PUMP": "heat_pump",
    "ELECTRIC": "electric",
    "NONE": "none",
}

FURNISHED_TO_XE: dict[str, str] = {
    "NO": "no",
    "PARTIALLY": "partially",
    "FULLY": "fully",
}

CONDITION_TO_XE: dict[str, str] = {
    "EXCELLENT": "excellent",
    "VERY_GOOD": "very_good",
    "GOOD": "good",
    "NEEDS_RENOVATION": "needs_renovation",
}

# (amenity flag names, portal field)
AMENITY_FIELDS: list[tuple[tuple[str, ...], str]] = [
    (("parking", "hasParking"), "item.parking"),
    (("airConditioning", "ac"), "item.air_conditioning"),
    (("pool", "swimmingPool"), "item.pool"),
    (("garden",), "item.garden"),
    (("storage",), "item.storage"),
    (("balcony",), "item.balcony"),
    (("security", "alarm"), "item.security"),
    (("view", "seaView", "mountainView"), "item.view"),
]

LEVEL_GROUND = "L0"
LEVEL_MEZZANINE = "LM"
LEVEL_BASEMENT_1 = "B1"
LEVEL_BASEMENT_2 = "B2"
LEVEL_9_PLUS = "L9"

_FLOOR_WORDS = {
    "ground": LEVEL_GROUND,
    "ισόγειο": LEVEL_GROUND,
    "basement": LEVEL_BASEMENT_1,
    "υπόγειο": LEVEL_BASEMENT_1,
    "mezzanine": LEVEL_MEZZANINE,
    "ημιόροφος": LEVEL_MEZZANINE,
}


# ============================================
# Helpers
# ============================================

def map_floor_to_level(floor: str | int | None) -> str:
    """Map a free-form floor value to a portal level code."""
    if floor is None or floor == "":
        return LEVEL_GROUND

    text = str(floor).strip().lower()
    if text in _FLOOR_WORDS:
        return _FLOOR_WORDS[text]

    match = re.match(r"^-?\d+", text)
    if not match:
        return LEVEL_GROUND

    number = int(match.group())
    if number <= -2:
        return LEVEL_BASEMENT_2
    if number == -1:
        return LEVEL_BASEMENT_1
    if number >= 9:
        return LEVEL_9_PLUS
    return f"L{number}"


def map_property_type(property_type: str | None) -> str:
    if not property_type:
        return "re_residence"
    return PROPERTY_TYPE_TO_XE.get(property_type, "re_misc")


def map_transaction_type(transaction_type: str | None) -> str:
    if not transaction_type:
        return "SELL.NORMAL"
    return TRANSACTION_TYPE_TO_XE.get(transaction_type, "SELL.NORMAL")


def clean_text(text: str | None) -> str:
    """Strip HTML tags and collapse whitespace."""
    if not text:
        return ""
    text = re.sub(r"<[^>]*>", "", text)
    return re.sub(r"\s+", " ", text).strip()


def _file_type(url: str) -> str:
    ext = url.rsplit(".", 1)[-1].split("?")[0].lower() if "." in url else ""
    return ext if ext in ("png", "bmp", "jpeg") else "jpg"


def map_images_to_assets(urls: list[str]) -> list[dict[str, Any]]:
    """Reference-mode image assets, first image primary, capped at 30."""
    return [
        {
            "type": "IMAGE",
            "id": f"img_{index}",
            "fileType": _file_type(url),
            "status": "ACTIVE",
            "isPrimary": "1" if index == 1 else "0",
            "order": index,
            "uri": url,
        }
        for index, url in enumerate(urls[:MAX_ASSETS], start=1)
    ]


def _number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


# ============================================
# Mapper
# ============================================

class XePropertyMapper(IPropertyMapper):
    """Maps CRM properties to Unified Ad items.

    This class handles:
    - Required-field validation (name, price unless EXCHANGE, area)
    - Type and transaction code mapping
    - Characteristic, geographic and amenity fields
    - Reference-mode image assets
    - Ref id generation for never-published properties
    """

    def validate(self, prop: Property) -> list[str]:
        errors = []
        if not prop.name:
            errors.append("Property name is required")
        if not prop.price and prop.transaction_type != "EXCHANGE":
            errors.append("Price is required")
        if not prop.area_sqm:
            errors.append("Property area/size is required")
        return errors

    def item_type(self, prop: Property) -> str:
        return map_property_type(prop.property_type)

    def generate_ref_id(self, prop: Property) -> str:
        """``OIKION-<TENANT8>-<PROP8>-<base36 ms timestamp><RAND4>``, upper case."""
        stamp = _base36(int(time.time() * 1000))
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
        return f"OIKION-{prop.tenant_id[:8]}-{prop.id[:8]}-{stamp}{suffix}".upper()

    def to_item(
        self,
        prop: Property,
        ref_id: str,
        settings: AgentSettings,
        publication_type: str,
    ) -> dict[str, Any]:
        item: dict[str, Any] = {
            "@type": self.item_type(prop),
            "@refId": ref_id,
            "@publicationType": publication_type,
            "Item.ownerId": settings.xe_owner_id,
            "Item.majorPhone": format_phone(settings.major_phone),
            "Item.otherPhones": [format_phone(p) for p in settings.other_phones if p],
            "Item.departmentOnCategory": "Real Estate",
            "Transaction.type": map_transaction_type(prop.transaction_type),
        }

        if prop.price:
            item["Transaction.price"] = _number(prop.price)
            item["Transaction.currency"] = "EUR"
            item["Transaction.frequency"] = (
                "MONTHLY" if prop.transaction_type in RENTAL_TRANSACTIONS else "ONCE"
            )

        if prop.description:
            item["Item.internetText"] = clean_text(prop.description)
        if prop.name:
            item["Item.addOnText"] = clean_text(prop.name)

        item["Field"] = self._fields(prop)

        if prop.images:
            item["Asset"] = map_images_to_assets(prop.images)

        return item

    def _fields(self, prop: Property) -> list[dict[str, str]]:
        fields: list[dict[str, str]] = []

        def add(name: str, value: Any) -> None:
            fields.append({"Name": name, "Value": str(value)})

        if prop.area_sqm:
            add(FIELD_AREA, _number(prop.area_sqm))
        if prop.year_built:
            add(FIELD_CONSTRUCTION_YEAR, prop.year_built)
        if prop.floor:
            add(FIELD_LEVEL, map_floor_to_level(prop.floor))
        if prop.energy_class in ENERGY_CLASS_TO_XE:
            add(FIELD_ENERGY_CLASS, ENERGY_CLASS_TO_XE[prop.energy_class])
        if prop.bedrooms is not None:
            add(FIELD_BEDROOMS, prop.bedrooms)
        if prop.bathrooms is not None:
            add(FIELD_BATHROOMS, int(prop.bathrooms))
        if prop.floors_total:
            add(FIELD_FLOORS_TOTAL, prop.floors_total)
        if prop.elevator is not None:
            add(FIELD_ELEVATOR, "1" if prop.elevator else "0")
        if prop.heating_type in HEATING_TYPE_TO_XE:
            add(FIELD_HEATING_TYPE, HEATING_TYPE_TO_XE[prop.heating_type])
        if prop.furnished in FURNISHED_TO_XE:
            add(FIELD_FURNISHED, FURNISHED_TO_XE[prop.furnished])
        if prop.condition in CONDITION_TO_XE:
            add(FIELD_CONDITION, CONDITION_TO_XE[prop.condition])
        if prop.plot_size_sqm:
            add(FIELD_PLOT_SIZE, _number(prop.plot_size_sqm))
        if prop.orientation:
            add(FIELD_ORIENTATION, ",".join(prop.orientation))

        # Geography
        if prop.address_street:
            add(FIELD_GEO_STREET, prop.address_street)
        if prop.postal_code:
            add(FIELD_GEO_POSTCODE, prop.postal_code)
        if prop.district:
            add(FIELD_GEO_AREA, prop.district)
        if prop.city:
            add(FIELD_GEO_CITY, prop.city)
        if prop.municipality:
            add(FIELD_GEO_MUNICIPALITY, prop.municipality)
        if prop.latitude is not None and prop.longitude is not None:
            add(FIELD_GEO_LATITUDE, prop.latitude)
            add(FIELD_GEO_LONGITUDE, prop.longitude)

        # Amenities
        for flags, name in AMENITY_FIELDS:
            if any(prop.amenities.get(flag) for flag in flags):
                add(name, "1")

        return fields


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))
