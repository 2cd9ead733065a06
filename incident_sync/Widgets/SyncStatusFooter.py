# incident_sync/Widgets/SyncStatusFooter.py
#
# Imports
#
# 3rd-party Libraries
from loguru import logger
from textual.app import ComposeResult
from textual.widget import Widget
from textual.widgets import Static
#
# Local Imports
from ..Sync.sync_service import SyncStatus
#
########################################################################################################################
#
# SyncStatusFooter

def format_sync_status(status: SyncStatus) -> str:
    """Footer text, e.g. 'Online | 3 pending' or 'Syncing... | 1 pending'."""
    if status.pending_count == 0:
        return f"{status.label} | All records synced"
    noun = "record" if status.pending_count == 1 else "records"
    return f"{status.label} | {status.pending_count} {noun} pending"


class SyncStatusFooter(Widget):
    DEFAULT_CSS = """
    SyncStatusFooter {
        dock: bottom;
        height: 1;
        layout: horizontal;
        background: $panel;
    }
    SyncStatusFooter #footer-key-help { width: auto; }
    SyncStatusFooter #footer-spacer { width: 1fr; }
    SyncStatusFooter #sync-status-indicator { width: auto; }
    SyncStatusFooter .-offline { color: $warning; }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._key_help = Static("Ctrl+Q (quit) / S (sync now) / O (toggle online)", id="footer-key-help")
        self._sync_status_display: Static = Static("", id="sync-status-indicator")
        self.status_text = ""

    def compose(self) -> ComposeResult:
        yield self._key_help
        yield Static(id="footer-spacer")  # pushes the status display to the right
        yield self._sync_status_display

    def update_sync_status(self, status: SyncStatus) -> None:
        try:
            self.status_text = format_sync_status(status)
            self._sync_status_display.update(self.status_text)
            self._sync_status_display.set_class(not status.is_online, "-offline")
        except Exception as e:
            # The widget may already be gone while the app shuts down
            logger.warning(f"Error updating SyncStatusFooter display: {e}")

#
# End of SyncStatusFooter.py
########################################################################################################################
