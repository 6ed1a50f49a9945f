"""XE.gr gateway adapter.

Implements IPortalGateway on top of XeClient: turns a SyncPackage into an
add/remove request and the portal's raw response into domain outcomes.
"""

import logging
from typing import TYPE_CHECKING, Any

from ..domain.entities import (
    IntegrationConfig,
    ItemOutcome,
    ItemStatus,
    RequestType,
    SubmissionResponse,
    SyncPackage,
)
from ..domain.ports import IPortalGateway

if TYPE_CHECKING:
    from ...api.xe_client import XeApiResponse, XeClient, XeCredentials

logger = logging.getLogger(__name__)

# Portal item states, normalized
_SUCCESS_STATES = {"SUCCESS", "OK", "PUBLISHED", "REMOVED", "DONE"}
_FAILED_STATES = {"FAILED", "FAILURE", "ERROR", "REJECTED", "INVALID"}


def normalize_item_status(raw: Any) -> ItemStatus:
    """Map the portal's item status vocabulary onto ItemStatus.

    Unknown values stay PENDING so a later reconciliation can resolve them.
    """
    if isinstance(raw, bool):
        return ItemStatus.SUCCESS if raw else ItemStatus.FAILED
    value = str(raw or "").strip().upper()
    if value in _SUCCESS_STATES:
        return ItemStatus.SUCCESS
    if value in _FAILED_STATES:
        return ItemStatus.FAILED
    return ItemStatus.PENDING


def parse_item_outcome(raw: dict[str, Any]) -> ItemOutcome | None:
    """Build an ItemOutcome from one portal result entry.

    Accepts either a ``status`` string or a boolean ``success`` flag, which
    is the shape the webhook sends.
    """
    ref_id = raw.get("refId") or raw.get("ref_id")
    if not ref_id:
        return None

    status_value = raw.get("status", raw.get("success"))
    status = normalize_item_status(status_value)
    error = raw.get("error") or raw.get("errorMessage") or raw.get("message")

    return ItemOutcome(
        ref_id=str(ref_id),
        status=status,
        error_message=str(error) if error and status == ItemStatus.FAILED else None,
        xe_ad_id=raw.get("xeAdId") or raw.get("xe_ad_id"),
    )


class XePortalGateway(IPortalGateway):
    """IPortalGateway backed by the XE.gr bulk import API."""

    def __init__(self, client: "XeClient"):
        self.client = client

    @staticmethod
    def credentials_for(config: IntegrationConfig) -> "XeCredentials":
        from ...api.xe_client import XeCredentials

        return XeCredentials(
            username=config.username,
            password=config.password,
            auth_token=config.auth_token,
            store_id=config.agent_id,
            trademark=config.trademark,
        )

    async def submit(
        self, config: IntegrationConfig, package: SyncPackage
    ) -> SubmissionResponse:
        credentials = self.credentials_for(config)
        eligible = package.eligible_items

        if package.request_type == RequestType.ADD_ITEMS:
            response = await self.client.add_items(
                credentials,
                package.package_id,
                package.policy.value,
                [item.payload for item in eligible if item.payload is not None],
            )
        else:
            response = await self.client.remove_items(
                credentials,
                package.package_id,
                [(item.item_type, item.ref_id) for item in eligible if item.ref_id],
            )

        return self._to_submission(response)

    async def fetch_status(
        self, config: IntegrationConfig, package_id: str
    ) -> SubmissionResponse:
        response = await self.client.get_package_status(
            self.credentials_for(config), package_id
        )
        return self._to_submission(response)

    @staticmethod
    def _to_submission(response: "XeApiResponse") -> SubmissionResponse:
        outcomes: dict[str, ItemOutcome] = {}
        for raw in response.items:
            outcome = parse_item_outcome(raw)
            if outcome is None:
                logger.warning(
                    f"Ignoring portal result without refId for package {response.package_id}"
                )
                continue
            outcomes[outcome.ref_id] = outcome

        return SubmissionResponse(
            package_id=response.package_id,
            outcomes=outcomes,
            status_code=response.status_code,
            message=response.body[:500] if response.body else None,
            known=response.known,
        )
