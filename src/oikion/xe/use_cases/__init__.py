"""Use cases layer - Business logic for XE.gr synchronization.

Each use case orchestrates one operation through the domain ports:
- BuildPackageUseCase / SubmitPackageUseCase: create and send packages
- ReconcilePackageUseCase: resolve outcomes that arrive later
- ListHistoryUseCase / GetPackageDetailUseCase / RetryPackageUseCase
- GetPropertyStatusUseCase / GetSyncStatsUseCase
- ManageIntegrationUseCase: credentials and agent settings
- PublishPropertiesUseCase: publish, unpublish and auto publish
"""

from .build_package import BuildPackageUseCase, generate_package_id
from .history import GetPackageDetailUseCase, ListHistoryUseCase
from .manage_integration import ManageIntegrationUseCase
from .publish import PublishPropertiesUseCase
from .reconcile_package import ReconcilePackageUseCase
from .retry_package import RetryPackageUseCase
from .stats import GetPropertyStatusUseCase, GetSyncStatsUseCase
from .submit_package import SubmitPackageUseCase

__all__ = [
    "BuildPackageUseCase",
    "SubmitPackageUseCase",
    "ReconcilePackageUseCase",
    "ListHistoryUseCase",
    "GetPackageDetailUseCase",
    "RetryPackageUseCase",
    "GetPropertyStatusUseCase",
    "GetSyncStatsUseCase",
    "ManageIntegrationUseCase",
    "PublishPropertiesUseCase",
    "generate_package_id",
]
