"""PostgreSQL adapter for XE.gr integration config and agent settings.

Implements IIntegrationRepository.
"""

import logging
from typing import TYPE_CHECKING

from ...api.database import database_connection, database_transaction
from ..domain.entities import AgentSettings, IntegrationConfig, PublicationType
from ..domain.ports import IIntegrationRepository

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_CONFIG_COLUMNS = """
    tenant_id, username, password, auth_token, agent_id, is_active,
    auto_publish, publication_type, trademark, default_phone,
    last_sync_at, last_package_id, created_at, updated_at
"""

_AGENT_COLUMNS = """
    tenant_id, agent_id, xe_owner_id, major_phone, other_phones, is_active,
    auto_publish, publication_type, created_at, updated_at
"""


class PostgresIntegrationRepository(IIntegrationRepository):
    """PostgreSQL implementation of IIntegrationRepository."""

    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    # ----------------------------------------
    # Integration config
    # ----------------------------------------

    async def get_config(self, tenant_id: str) -> IntegrationConfig | None:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"SELECT {_CONFIG_COLUMNS} FROM xe_integrations WHERE tenant_id = $1",
                tenant_id,
            )
        return self._row_to_config(row) if row else None

    async def save_config(self, config: IntegrationConfig) -> IntegrationConfig:
        async with database_transaction(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO xe_integrations (
                    tenant_id, username, password, auth_token, agent_id,
                    is_active, auto_publish, publication_type, trademark,
                    default_phone
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                ON CONFLICT (tenant_id) DO UPDATE SET
                    username = EXCLUDED.username,
                    password = EXCLUDED.password,
                    auth_token = EXCLUDED.auth_token,
                    agent_id = EXCLUDED.agent_id,
                    is_active = EXCLUDED.is_active,
                    auto_publish = EXCLUDED.auto_publish,
                    publication_type = EXCLUDED.publication_type,
                    trademark = EXCLUDED.trademark,
                    default_phone = EXCLUDED.default_phone,
                    updated_at = NOW()
                RETURNING {_CONFIG_COLUMNS}
                """,
                config.tenant_id,
                config.username,
                config.password,
                config.auth_token,
                config.agent_id,
                config.is_active,
                config.auto_publish,
                config.publication_type.value,
                config.trademark,
                config.default_phone,
            )
        logger.info(f"Saved XE integration for tenant {config.tenant_id}")
        return self._row_to_config(row)

    async def delete_config(self, tenant_id: str) -> bool:
        async with database_transaction(self.pool) as conn:
            result = await conn.execute(
                "DELETE FROM xe_integrations WHERE tenant_id = $1", tenant_id
            )
        return not result.endswith(" 0")

    # ----------------------------------------
    # Agent settings
    # ----------------------------------------

    async def list_agent_settings(self, tenant_id: str) -> list[AgentSettings]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_AGENT_COLUMNS} FROM xe_agent_settings
                WHERE tenant_id = $1 ORDER BY agent_id
                """,
                tenant_id,
            )
        return [self._row_to_agent(r) for r in rows]

    async def get_agent_settings(
        self, tenant_id: str, agent_id: str
    ) -> AgentSettings | None:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_AGENT_COLUMNS} FROM xe_agent_settings
                WHERE tenant_id = $1 AND agent_id = $2
                """,
                tenant_id,
                agent_id,
            )
        return self._row_to_agent(row) if row else None

    async def save_agent_settings(self, settings: AgentSettings) -> AgentSettings:
        async with database_transaction(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO xe_agent_settings (
                    tenant_id, agent_id, xe_owner_id, major_phone,
                    other_phones, is_active, auto_publish, publication_type
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                ON CONFLICT (tenant_id, agent_id) DO UPDATE SET
                    xe_owner_id = EXCLUDED.xe_owner_id,
                    major_phone = EXCLUDED.major_phone,
                    other_phones = EXCLUDED.other_phones,
                    is_active = EXCLUDED.is_active,
                    auto_publish = EXCLUDED.auto_publish,
                    publication_type = EXCLUDED.publication_type,
                    updated_at = NOW()
                RETURNING {_AGENT_COLUMNS}
                """,
                settings.tenant_id,
                settings.agent_id,
                settings.xe_owner_id,
                settings.major_phone,
                settings.other_phones,
                settings.is_active,
                settings.auto_publish,
                settings.publication_type.value,
            )
        return self._row_to_agent(row)

    async def delete_agent_settings(self, tenant_id: str, agent_id: str) -> bool:
        async with database_transaction(self.pool) as conn:
            result = await conn.execute(
                "DELETE FROM xe_agent_settings WHERE tenant_id = $1 AND agent_id = $2",
                tenant_id,
                agent_id,
            )
        return not result.endswith(" 0")

    # ----------------------------------------
    # Mapping
    # ----------------------------------------

    @staticmethod
    def _row_to_config(row) -> IntegrationConfig:
        return IntegrationConfig(
            tenant_id=row["tenant_id"],
            username=row["username"],
            password=row["password"],
            auth_token=row["auth_token"],
            agent_id=row["agent_id"],
            is_active=row["is_active"],
            auto_publish=row["auto_publish"],
            publication_type=PublicationType(row["publication_type"]),
            trademark=row["trademark"],
            default_phone=row["default_phone"],
            last_sync_at=row["last_sync_at"],
            last_package_id=row["last_package_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_agent(row) -> AgentSettings:
        return AgentSettings(
            tenant_id=row["tenant_id"],
            agent_id=row["agent_id"],
            xe_owner_id=row["xe_owner_id"],
            major_phone=row["major_phone"],
            other_phones=list(row["other_phones"] or []),
            is_active=row["is_active"],
            auto_publish=row["auto_publish"],
            publication_type=PublicationType(row["publication_type"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
