"""HTTP API for XE.gr synchronization."""

from .dependencies import (
    close_db_pool,
    close_lock_pool,
    close_xe_client,
    get_tenant_id,
    init_db_pool,
    init_lock_pool,
    init_xe_client,
)
from .router import router

__all__ = [
    "router",
    "get_tenant_id",
    "init_db_pool",
    "init_lock_pool",
    "init_xe_client",
    "close_db_pool",
    "close_lock_pool",
    "close_xe_client",
]
