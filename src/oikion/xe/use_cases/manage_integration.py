"""Manage Integration Use Case - tenant credentials and agent settings.

Deleting an integration does not retract listings already on the portal
and keeps the sync history.
"""

import logging
from typing import Optional

from ...api.exceptions import NotFoundError, ValidationError
from ..domain.entities import (
    AgentSettings,
    IntegrationConfig,
    PublicationType,
    format_phone,
)
from ..domain.ports import IIntegrationRepository

logger = logging.getLogger(__name__)

MIN_AUTH_TOKEN_LENGTH = 10


def _require(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value.strip()


def _publication_type(value) -> PublicationType:
    if isinstance(value, PublicationType):
        return value
    try:
        return PublicationType(str(value).upper())
    except ValueError:
        raise ValidationError(
            f"Unknown publication type: {value}", field="publication_type"
        )


class ManageIntegrationUseCase:
    """CRUD for the tenant's XE.gr integration and per-agent settings."""

    def __init__(self, integration_repo: IIntegrationRepository):
        self.integrations = integration_repo

    # ----------------------------------------
    # Integration config
    # ----------------------------------------

    async def get_config(self, tenant_id: str) -> IntegrationConfig:
        config = await self.integrations.get_config(tenant_id)
        if config is None:
            raise NotFoundError("XE integration", tenant_id)
        return config

    async def save_config(
        self,
        tenant_id: str,
        username: str,
        auth_token: str,
        agent_id: str,
        password: Optional[str] = None,
        is_active: Optional[bool] = None,
        auto_publish: Optional[bool] = None,
        publication_type: Optional[str] = None,
        trademark: Optional[str] = None,
        default_phone: Optional[str] = None,
    ) -> IntegrationConfig:
        """Create or update the integration.

        On update a blank ``password`` keeps the stored one, since the
        password is never handed back to clients. Unset flags keep their
        current values.

        Raises:
            ValidationError: A required field is blank or the auth token is
                too short.
        """
        existing = await self.integrations.get_config(tenant_id)

        if not (password and password.strip()):
            if existing is None:
                raise ValidationError("password is required", field="password")
            password = existing.password

        config = IntegrationConfig(
            tenant_id=tenant_id,
            username=_require(username, "username"),
            password=password,
            auth_token=self.validate_auth_token(auth_token),
            agent_id=_require(agent_id, "agent_id"),
        )

        if existing is not None:
            config.is_active = existing.is_active
            config.auto_publish = existing.auto_publish
            config.publication_type = existing.publication_type
            config.trademark = existing.trademark
            config.default_phone = existing.default_phone

        if is_active is not None:
            config.is_active = is_active
        if auto_publish is not None:
            config.auto_publish = auto_publish
        if publication_type is not None:
            config.publication_type = _publication_type(publication_type)
        if trademark is not None:
            config.trademark = trademark.strip() or None
        if default_phone is not None:
            config.default_phone = format_phone(default_phone) or None

        saved = await self.integrations.save_config(config)
        logger.info(
            f"XE integration {'updated' if existing else 'created'} for tenant {tenant_id} "
            f"(active={saved.is_active})"
        )
        return saved

    @staticmethod
    def validate_auth_token(auth_token: Optional[str]) -> str:
        token = _require(auth_token, "auth_token")
        if len(token) < MIN_AUTH_TOKEN_LENGTH:
            raise ValidationError("Invalid auth token format", field="auth_token")
        return token

    async def set_active(self, tenant_id: str, is_active: bool) -> IntegrationConfig:
        config = await self.get_config(tenant_id)
        config.is_active = is_active
        saved = await self.integrations.save_config(config)
        logger.info(f"XE integration for tenant {tenant_id} set active={is_active}")
        return saved

    async def delete_config(self, tenant_id: str) -> None:
        if not await self.integrations.delete_config(tenant_id):
            raise NotFoundError("XE integration", tenant_id)
        logger.info(f"XE integration deleted for tenant {tenant_id}")

    # ----------------------------------------
    # Agent settings
    # ----------------------------------------

    async def list_agents(self, tenant_id: str) -> list[AgentSettings]:
        return await self.integrations.list_agent_settings(tenant_id)

    async def get_agent(self, tenant_id: str, agent_id: str) -> AgentSettings:
        settings = await self.integrations.get_agent_settings(tenant_id, agent_id)
        if settings is None:
            raise NotFoundError("XE agent settings", agent_id)
        return settings

    async def save_agent(
        self,
        tenant_id: str,
        agent_id: str,
        xe_owner_id: str,
        major_phone: str,
        other_phones: Optional[list[str]] = None,
        is_active: bool = True,
        auto_publish: bool = True,
        publication_type: str = PublicationType.BASIC.value,
    ) -> AgentSettings:
        """Create or update one agent's portal identity.

        Raises:
            ValidationError: The integration is missing or a required field
                is blank.
        """
        if await self.integrations.get_config(tenant_id) is None:
            raise ValidationError("XE integration not configured")

        phone = format_phone(_require(major_phone, "major_phone"))
        if not phone:
            raise ValidationError("major_phone has no digits", field="major_phone")

        settings = AgentSettings(
            tenant_id=tenant_id,
            agent_id=_require(agent_id, "agent_id"),
            xe_owner_id=_require(xe_owner_id, "xe_owner_id"),
            major_phone=phone,
            other_phones=[p for p in (format_phone(x) for x in other_phones or []) if p],
            is_active=is_active,
            auto_publish=auto_publish,
            publication_type=_publication_type(publication_type),
        )
        return await self.integrations.save_agent_settings(settings)

    async def delete_agent(self, tenant_id: str, agent_id: str) -> None:
        if not await self.integrations.delete_agent_settings(tenant_id, agent_id):
            raise NotFoundError("XE agent settings", agent_id)
