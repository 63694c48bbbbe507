"""Pure transform from enriched source records to destination payloads."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence
from urllib.parse import urljoin

from ..config import DestinationConfig
from ..models import EnrichedRecord, Image

TRUTHY_FLAGS = frozenset({"1", "true", "t", "yes", "y", "si", "sí", "s"})

# Source keys tried in order for each destination field.
DESCRIPTION_KEYS = ("descripcion", "partDescription", "descricao")
PRICE_KEYS = ("precioV", "price", "preco")
QUANTITY_KEYS = ("cantidad", "quantity", "stock")
OEM_KEYS = ("refsOEM", "oemReference", "OEM")
VIN_KEYS = ("bastidor", "vin")
YEAR_KEYS = ("anyo", "year")
MILEAGE_KEYS = ("kms", "km", "mileage")
WEIGHT_KEYS = ("peso", "weight")
DISMANTLED_KEYS = ("desmontada", "dismantled")
MOTOR_KEYS = ("codMotor", "motorCode")

_MOTOR_CODE = re.compile(r"^(?=.*[A-Z])(?=.*\d)[A-Z0-9]{3,10}$")


def parse_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY_FLAGS
    return bool(value)


def coerce_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if result == result else default  # NaN


def coerce_int(value: Any, default: int = 0) -> int:
    if isinstance(value, str):
        match = re.match(r"^\s*[-+]?\d+", value)
        return int(match.group()) if match else default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


@dataclass(frozen=True, slots=True)
class VehicleDescriptor:
    brand: str | None = None
    model: str | None = None
    version: str | None = None
    submodel: str | None = None
    motor_code: str | None = None


def split_vehicle_descriptor(text: str | None, brand: str | None = None) -> VehicleDescriptor:
    """Best-effort split of ``"SEAT IBIZA (6J) 1.4 TDI BMS"`` style strings."""

    text = (text or "").strip()
    brand = (brand or "").strip()
    if brand and not text.upper().startswith(brand.upper()):
        text = f"{brand} {text}".strip()
    tokens = text.split()
    if not tokens:
        return VehicleDescriptor(brand=brand or None)

    head, rest = tokens[0], tokens[1:]
    motor_code = None
    if rest and _MOTOR_CODE.match(rest[-1]):
        motor_code = rest.pop()

    submodel_parts = [token for token in rest if token.startswith("(") and token.endswith(")")]
    remaining = [token for token in rest if token not in submodel_parts]
    split_at = next(
        (index for index, token in enumerate(remaining) if token[:1].isdigit()),
        len(remaining),
    )
    model = " ".join(remaining[:split_at]) or None
    version = " ".join(remaining[split_at:]) or None
    submodel = " ".join(part[1:-1] for part in submodel_parts).strip() or None
    return VehicleDescriptor(
        brand=head, model=model, version=version, submodel=submodel, motor_code=motor_code
    )


def resolve_image_url(location: Any, base_url: str | None = None) -> str | None:
    if not isinstance(location, str) or not location:
        return None
    location = location.strip()
    if location.startswith(("http://", "https://")):
        return location
    if location.startswith("//"):
        return f"https:{location}"
    if base_url:
        return urljoin(base_url.rstrip("/") + "/", location.lstrip("/"))
    return None


def resolve_images(images: Iterable[Image], base_url: str | None = None) -> list[str]:
    urls = (resolve_image_url(image.location_ref, base_url) for image in images)
    return [url for url in urls if url]


def _first(fields: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = fields.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def map_record(enriched: EnrichedRecord, config: DestinationConfig) -> dict[str, Any]:
    """Build one destination item; missing numerics default to zero."""

    fields = enriched.record.fields
    descriptor = split_vehicle_descriptor(
        _text(fields.get(config.descriptor_field)),
        _text(fields.get(config.brand_field)),
    )
    quantity = coerce_int(_first(fields, QUANTITY_KEYS))
    images = resolve_images(enriched.images, config.image_base_url)

    item: dict[str, Any] = {"warehouseID": enriched.identifier}
    if config.external_platform_name:
        item["externalPlatformName"] = config.external_platform_name
    item.update(
        {
            "partDescription": _text(_first(fields, DESCRIPTION_KEYS)),
            "price": coerce_float(_first(fields, PRICE_KEYS)),
            "quantity": quantity,
            "vehicleType": config.vehicle_type,
            "isActive": quantity > 0,
            "dismantled": parse_flag(_first(fields, DISMANTLED_KEYS)),
            "oemReference": _text(_first(fields, OEM_KEYS)),
            "vin": _text(_first(fields, VIN_KEYS)),
            "year": coerce_int(_first(fields, YEAR_KEYS)),
            "mileage": coerce_int(_first(fields, MILEAGE_KEYS)),
            "weight": coerce_float(_first(fields, WEIGHT_KEYS)),
            "brand": descriptor.brand,
            "model": descriptor.model,
            "version": descriptor.version,
            "submodel": descriptor.submodel,
            "motorCode": _text(_first(fields, MOTOR_KEYS)) or descriptor.motor_code,
            "images": images,
            "mainImage": images[0] if images else None,
        }
    )
    return item


def map_batch(batch: Iterable[EnrichedRecord], config: DestinationConfig) -> list[dict[str, Any]]:
    return [map_record(enriched, config) for enriched in batch]


__all__ = [
    "TRUTHY_FLAGS",
    "VehicleDescriptor",
    "coerce_float",
    "coerce_int",
    "map_batch",
    "map_record",
    "parse_flag",
    "resolve_image_url",
    "resolve_images",
    "split_vehicle_descriptor",
]
