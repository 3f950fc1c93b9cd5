from .orchestrator import SYNC_ERROR, TABLE_UPDATED, SweepGuard, SyncOrchestrator, SyncResult

__all__ = ["SYNC_ERROR", "TABLE_UPDATED", "SweepGuard", "SyncOrchestrator", "SyncResult"]
