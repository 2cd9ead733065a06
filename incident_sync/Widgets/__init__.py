from .SyncStatusFooter import SyncStatusFooter, format_sync_status

__all__ = ["SyncStatusFooter", "format_sync_status"]
