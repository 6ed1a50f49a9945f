"""PostgreSQL repository adapter for sync packages and items.

Implements ISyncRepository. Outcome writes (package status, item outcomes,
property publication fields, integration bookkeeping) share one
transaction, so a crash can never leave a property's ``xe_published`` flag
disagreeing with its latest recorded item.
"""

import logging
from typing import TYPE_CHECKING

from ...api.database import database_connection, database_transaction
from ...api.exceptions import InvalidStateError
from ..domain.entities import (
    ItemStatus,
    PackageOutcome,
    PublicationUpdate,
    RequestType,
    SyncItemRecord,
    SyncPackageRecord,
    SyncPolicy,
    SyncStats,
    SyncStatus,
)
from ..domain.ports import ISyncRepository

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_PACKAGE_COLUMNS = """
    package_id, tenant_id, request_type, policy, status, total_items,
    success_count, failure_count, submitted_at, processed_at,
    error_message, retry_of
"""

_ITEM_COLUMNS = """
    package_id, property_id, property_name, ref_id, item_type, status,
    error_message, xe_ad_id, updated_at
"""

# Publication field updates. $1 property, $2 tenant, $3 synced_at,
# $4 status, $5 package id, $6 ref id (publish only).
_PUBLISH_SQL = """
    UPDATE properties SET
        xe_published = TRUE,
        xe_ref_id = $6,
        xe_last_sync_at = $3,
        xe_last_sync_status = $4,
        xe_last_package_id = $5
    WHERE id = $1 AND tenant_id = $2
"""

_UNPUBLISH_SQL = """
    UPDATE properties SET
        xe_published = FALSE,
        xe_ref_id = NULL,
        xe_last_sync_at = $3,
        xe_last_sync_status = $4,
        xe_last_package_id = $5
    WHERE id = $1 AND tenant_id = $2
"""

_TOUCH_SQL = """
    UPDATE properties SET
        xe_last_sync_at = $3,
        xe_last_sync_status = $4,
        xe_last_package_id = $5
    WHERE id = $1 AND tenant_id = $2
"""

# Skips properties whose latest submission is a package submitted after $5.
_SUPERSEDED_GUARD = """
      AND NOT EXISTS (
          SELECT 1 FROM xe_sync_packages newer, xe_sync_packages this
          WHERE this.package_id = $5
            AND newer.package_id = properties.xe_last_package_id
            AND newer.package_id <> this.package_id
            AND newer.submitted_at > this.submitted_at
      )
"""


class PostgresSyncRepository(ISyncRepository):
    """PostgreSQL implementation of ISyncRepository."""

    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    # ----------------------------------------
    # Writes
    # ----------------------------------------

    async def create_package(
        self, record: SyncPackageRecord, items: list[SyncItemRecord]
    ) -> None:
        async with database_transaction(self.pool) as conn:
            await conn.execute(
                f"""
                INSERT INTO xe_sync_packages ({_PACKAGE_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                """,
                *self._package_to_record(record),
            )
            if items:
                await conn.executemany(
                    f"""
                    INSERT INTO xe_sync_items ({_ITEM_COLUMNS})
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, COALESCE($9, NOW()))
                    """,
                    [self._item_to_record(i) for i in items],
                )

        logger.debug(
            f"Recorded package {record.package_id} ({len(items)} items, {record.status.value})"
        )

    async def save_outcome(self, outcome: PackageOutcome) -> None:
        """Write one outcome transaction.

        Raises:
            InvalidStateError: The package was already terminal, meaning a
                concurrent reconciliation got there first. Nothing is written.
        """
        package = outcome.package

        async with database_transaction(self.pool) as conn:
            result = await conn.execute(
                """
                UPDATE xe_sync_packages SET
                    status = $2,
                    success_count = $3,
                    failure_count = $4,
                    processed_at = $5,
                    error_message = $6
                WHERE package_id = $1
                  AND status NOT IN ('SUCCESS', 'FAILED')
                """,
                package.package_id,
                package.status.value,
                package.success_count,
                package.failure_count,
                package.processed_at,
                package.error_message,
            )
            if result.endswith(" 0"):
                raise InvalidStateError(
                    f"Package {package.package_id} is already terminal",
                    current_state="TERMINAL",
                )

            if outcome.items:
                await conn.executemany(
                    """
                    UPDATE xe_sync_items SET
                        status = $3,
                        error_message = $4,
                        xe_ad_id = $5,
                        updated_at = COALESCE($6, NOW())
                    WHERE package_id = $1 AND property_id = $2
                    """,
                    [
                        (
                            i.package_id,
                            i.property_id,
                            i.status.value,
                            i.error_message,
                            i.xe_ad_id,
                            i.updated_at,
                        )
                        for i in outcome.items
                    ],
                )

            for update in outcome.publication_updates:
                await self._apply_publication(
                    conn, package.tenant_id, update, outcome.skip_superseded
                )

            if outcome.touch_integration:
                await conn.execute(
                    """
                    UPDATE xe_integrations SET
                        last_sync_at = $2,
                        last_package_id = $3,
                        updated_at = NOW()
                    WHERE tenant_id = $1
                    """,
                    package.tenant_id,
                    package.submitted_at,
                    package.package_id,
                )

    @staticmethod
    async def _apply_publication(
        conn,
        tenant_id: str,
        update: PublicationUpdate,
        skip_superseded: bool,
    ) -> None:
        args = [
            update.property_id,
            tenant_id,
            update.synced_at,
            update.status.value,
            update.package_id,
        ]

        if update.status != ItemStatus.SUCCESS:
            sql = _TOUCH_SQL
        elif update.request_type == RequestType.ADD_ITEMS:
            sql = _PUBLISH_SQL
            args.append(update.ref_id)
        else:
            sql = _UNPUBLISH_SQL

        if skip_superseded:
            sql += _SUPERSEDED_GUARD

        result = await conn.execute(sql, *args)
        if result.endswith(" 0"):
            logger.info(
                f"Skipped publication update for property {update.property_id}: "
                f"superseded or deleted"
            )

    # ----------------------------------------
    # Reads
    # ----------------------------------------

    async def get_package(
        self, tenant_id: str, package_id: str
    ) -> SyncPackageRecord | None:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_PACKAGE_COLUMNS} FROM xe_sync_packages
                WHERE package_id = $1 AND tenant_id = $2
                """,
                package_id,
                tenant_id,
            )
        return self._row_to_package(row) if row else None

    async def get_items(self, package_id: str) -> list[SyncItemRecord]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_ITEM_COLUMNS} FROM xe_sync_items
                WHERE package_id = $1
                ORDER BY id
                """,
                package_id,
            )
        return [self._row_to_item(r) for r in rows]

    async def list_packages(
        self,
        tenant_id: str,
        status: SyncStatus | None,
        limit: int,
        offset: int,
    ) -> tuple[list[SyncPackageRecord], int]:
        status_value = status.value if status else None

        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_PACKAGE_COLUMNS} FROM xe_sync_packages
                WHERE tenant_id = $1
                  AND ($2::text IS NULL OR status = $2)
                ORDER BY submitted_at DESC, package_id DESC
                LIMIT $3 OFFSET $4
                """,
                tenant_id,
                status_value,
                limit,
                offset,
            )
            total = await conn.fetchval(
                """
                SELECT COUNT(*) FROM xe_sync_packages
                WHERE tenant_id = $1
                  AND ($2::text IS NULL OR status = $2)
                """,
                tenant_id,
                status_value,
            )

        return [self._row_to_package(r) for r in rows], int(total or 0)

    async def list_unresolved(
        self, older_than_seconds: float, limit: int
    ) -> list[SyncPackageRecord]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_PACKAGE_COLUMNS} FROM xe_sync_packages
                WHERE status IN ('PENDING', 'PROCESSING')
                  AND submitted_at < NOW() - make_interval(secs => $1)
                ORDER BY last_checked_at NULLS FIRST, submitted_at
                LIMIT $2
                """,
                float(older_than_seconds),
                limit,
            )
        return [self._row_to_package(r) for r in rows]

    async def mark_checked(self, package_id: str) -> None:
        async with database_connection(self.pool) as conn:
            await conn.execute(
                "UPDATE xe_sync_packages SET last_checked_at = NOW() WHERE package_id = $1",
                package_id,
            )

    async def get_stats(self, tenant_id: str) -> SyncStats:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                """
                SELECT
                    COUNT(*) AS total,
                    COUNT(*) FILTER (WHERE status = 'SUCCESS') AS successful,
                    COUNT(*) FILTER (WHERE status = 'FAILED') AS failed,
                    COUNT(*) FILTER (WHERE status IN ('PENDING', 'PROCESSING')) AS pending,
                    MAX(submitted_at) AS last_sync_at
                FROM xe_sync_packages
                WHERE tenant_id = $1
                """,
                tenant_id,
            )

        return SyncStats(
            total_syncs=row["total"],
            successful_syncs=row["successful"],
            failed_syncs=row["failed"],
            pending_syncs=row["pending"],
            last_sync_at=row["last_sync_at"],
        )

    # ----------------------------------------
    # Mapping
    # ----------------------------------------

    @staticmethod
    def _package_to_record(p: SyncPackageRecord) -> tuple:
        return (
            p.package_id,
            p.tenant_id,
            p.request_type.value,
            p.policy.value,
            p.status.value,
            p.total_items,
            p.success_count,
            p.failure_count,
            p.submitted_at,
            p.processed_at,
            p.error_message,
            p.retry_of,
        )

    @staticmethod
    def _item_to_record(i: SyncItemRecord) -> tuple:
        return (
            i.package_id,
            i.property_id,
            i.property_name,
            i.ref_id,
            i.item_type,
            i.status.value,
            i.error_message,
            i.xe_ad_id,
            i.updated_at,
        )

    @staticmethod
    def _row_to_package(row) -> SyncPackageRecord:
        return SyncPackageRecord(
            package_id=row["package_id"],
            tenant_id=row["tenant_id"],
            request_type=RequestType(row["request_type"]),
            policy=SyncPolicy(row["policy"]),
            status=SyncStatus(row["status"]),
            total_items=row["total_items"],
            success_count=row["success_count"],
            failure_count=row["failure_count"],
            submitted_at=row["submitted_at"],
            processed_at=row["processed_at"],
            error_message=row["error_message"],
            retry_of=row["retry_of"],
        )

    @staticmethod
    def _row_to_item(row) -> SyncItemRecord:
        return SyncItemRecord(
            package_id=row["package_id"],
            property_id=row["property_id"],
            property_name=row["property_name"],
            ref_id=row["ref_id"],
            item_type=row["item_type"],
            status=ItemStatus(row["status"]),
            error_message=row["error_message"],
            xe_ad_id=row["xe_ad_id"],
            updated_at=row["updated_at"],
        )
