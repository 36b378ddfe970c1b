"""
adr_orchestration.services -- Stateful services over the engine tables.

Responsibility:
    Compose the pure domain (scheduling math, lifecycle, vendor status
    table) with database sessions and the vendor API.  This is the only
    layer of the engine that holds sessions or talks to the vendor.

Invariants enforced:
    - Services flush, never commit.  The pipeline step runner owns the
      transaction boundaries (one commit per batch).
    - Per-item failures are contained in a SAVEPOINT and counted.
    - Vendor calls run in worker threads that never touch a session.
"""

from adr_kernel.logging_config import get_logger

logger = get_logger("services")

from adr_orchestration.services.account_sync import (  # noqa: E402
    AccountFeed,
    AccountSyncService,
    FileAccountFeed,
)
from adr_orchestration.services.blacklist import BlacklistFilter  # noqa: E402
from adr_orchestration.services.configuration import ConfigurationService  # noqa: E402
from adr_orchestration.services.credential_verifier import CredentialVerifier  # noqa: E402
from adr_orchestration.services.job_factory import JobFactory  # noqa: E402
from adr_orchestration.services.ledger import ExecutionLedger  # noqa: E402
from adr_orchestration.services.scrape_dispatcher import ScrapeDispatcher  # noqa: E402
from adr_orchestration.services.stale_jobs import StaleJobFinalizer  # noqa: E402
from adr_orchestration.services.status_poller import StatusPoller  # noqa: E402
from adr_orchestration.services.vendor_client import (  # noqa: E402
    HttpVendorClient,
    VendorClient,
    VendorRequest,
)

__all__ = [
    "AccountFeed",
    "AccountSyncService",
    "BlacklistFilter",
    "ConfigurationService",
    "CredentialVerifier",
    "ExecutionLedger",
    "FileAccountFeed",
    "HttpVendorClient",
    "JobFactory",
    "ScrapeDispatcher",
    "StaleJobFinalizer",
    "StatusPoller",
    "VendorClient",
    "VendorRequest",
]
