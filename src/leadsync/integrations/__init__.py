"""CRM integrations -- incremental provider -> lead store sync.

- SyncRepository: async persistence for integrations, leads, lists and run logs
- ListManager: provenance-tagged lead list get-or-create, linking and recounts
- SyncOrchestrator: discover integrations and run one sync per integration

Provider specifics live in the salesforce subpackage.
"""

from src.leadsync.integrations.list_manager import ListManager
from src.leadsync.integrations.repository import SyncRepository
from src.leadsync.integrations.sync import SyncOrchestrator, classify_run_status

__all__ = [
    "SyncRepository",
    "ListManager",
    "SyncOrchestrator",
    "classify_run_status",
]
