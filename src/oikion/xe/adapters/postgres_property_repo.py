"""PostgreSQL adapter for reading CRM properties.

Implements IPropertyRepository. Every query is scoped by tenant so ids
belonging to another tenant behave exactly like unknown ids.
"""

import json
from typing import TYPE_CHECKING, Any

from ...api.database import database_connection
from ..domain.entities import ItemStatus, Property
from ..domain.ports import IPropertyRepository

if TYPE_CHECKING:
    import asyncpg

_COLUMNS = """
    id, tenant_id, property_name, property_type, transaction_type, price,
    size_net_sqm, plot_size_sqm, year_built, floor, floors_total, bedrooms,
    bathrooms, elevator, energy_cert_class, heating_type, furnished,
    condition, orientation, description, address_street, postal_code, area,
    address_city, municipality, latitude, longitude, amenities, images,
    property_status, portal_visibility, assigned_to, xe_published,
    xe_ref_id, xe_last_sync_at, xe_last_sync_status, xe_last_package_id
"""


def _json(value: Any, default: Any) -> Any:
    """JSONB columns arrive as text unless a codec is registered."""
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _float(value: Any) -> float | None:
    return float(value) if value is not None else None


class PostgresPropertyRepository(IPropertyRepository):
    """PostgreSQL implementation of IPropertyRepository."""

    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def get_by_ids(self, tenant_id: str, property_ids: list[str]) -> list[Property]:
        if not property_ids:
            return []
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM properties WHERE tenant_id = $1 AND id = ANY($2::text[])",
                tenant_id,
                property_ids,
            )
        return [self._row_to_property(r) for r in rows]

    async def get_by_id(self, tenant_id: str, property_id: str) -> Property | None:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM properties WHERE tenant_id = $1 AND id = $2",
                tenant_id,
                property_id,
            )
        return self._row_to_property(row) if row else None

    async def list_publishable(self, tenant_id: str) -> list[Property]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM properties
                WHERE tenant_id = $1
                  AND property_status = 'ACTIVE'
                  AND portal_visibility = 'PUBLIC'
                ORDER BY created_at
                """,
                tenant_id,
            )
        return [self._row_to_property(r) for r in rows]

    async def count_published(self, tenant_id: str) -> int:
        async with database_connection(self.pool) as conn:
            count = await conn.fetchval(
                "SELECT COUNT(*) FROM properties WHERE tenant_id = $1 AND xe_published",
                tenant_id,
            )
        return int(count or 0)

    @staticmethod
    def _row_to_property(row) -> Property:
        status = row["xe_last_sync_status"]
        return Property(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["property_name"],
            property_type=row["property_type"],
            transaction_type=row["transaction_type"],
            price=_float(row["price"]),
            area_sqm=_float(row["size_net_sqm"]),
            plot_size_sqm=_float(row["plot_size_sqm"]),
            year_built=row["year_built"],
            floor=row["floor"],
            floors_total=row["floors_total"],
            bedrooms=row["bedrooms"],
            bathrooms=_float(row["bathrooms"]),
            elevator=row["elevator"],
            energy_class=row["energy_cert_class"],
            heating_type=row["heating_type"],
            furnished=row["furnished"],
            condition=row["condition"],
            orientation=_json(row["orientation"], []),
            description=row["description"],
            address_street=row["address_street"],
            postal_code=row["postal_code"],
            district=row["area"],
            city=row["address_city"],
            municipality=row["municipality"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            amenities=_json(row["amenities"], {}),
            images=_json(row["images"], []),
            status=row["property_status"],
            portal_visibility=row["portal_visibility"],
            assigned_agent_id=row["assigned_to"],
            is_published=row["xe_published"],
            xe_ref_id=row["xe_ref_id"],
            last_sync_at=row["xe_last_sync_at"],
            last_sync_status=ItemStatus(status) if status else None,
            last_package_id=row["xe_last_package_id"],
        )
