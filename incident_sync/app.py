# incident_sync/app.py
# Description: Textual front end showing the merged record list and the live sync status.
#
# Imports
from typing import Optional
#
# 3rd-party Libraries
from loguru import logger
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import DataTable, Header, Static
#
# Local Imports
from .Constants import KIND_REPORT
from .Logging_Config import configure_logging
from .config import load_settings
from .Sync.merge import MergedView
from .Sync.sync_service import SyncService, SyncStatus
from .Widgets.SyncStatusFooter import SyncStatusFooter
#
########################################################################################################################
#
# Functions:

class IncidentSyncApp(App):
    TITLE = "Incident Sync"
    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit App", show=True),
        Binding("s", "sync_now", "Sync now"),
        Binding("o", "toggle_online", "Toggle online"),
        Binding("r", "refresh_list", "Refresh list"),
    ]

    def __init__(self, service: Optional[SyncService] = None, kind: str = KIND_REPORT, **kwargs):
        super().__init__(**kwargs)
        self.service = service
        self.kind = kind
        self._owns_service = service is None
        self._unsubscribe = None
        self.last_view: Optional[MergedView] = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static("", id="list-summary")
        yield DataTable(id="records-table", cursor_type="row")
        yield SyncStatusFooter(id="sync-status-footer")

    async def on_mount(self) -> None:
        table = self.query_one("#records-table", DataTable)
        table.add_columns("State", "Municipio / Name", "Detail", "Captured", "Server id")
        if self.service is None:
            self.service = await SyncService.from_config()
        self._unsubscribe = self.service.subscribe(self._on_sync_status)
        await self.service.start()
        await self.action_refresh_list()

    async def on_unmount(self) -> None:
        logger.info("--- App Unmounting ---")
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self.service is not None:
            if self._owns_service:
                await self.service.close()
            else:
                await self.service.stop()

    def _on_sync_status(self, status: SyncStatus) -> None:
        try:
            self.query_one(SyncStatusFooter).update_sync_status(status)
        except Exception as e:
            logger.debug(f"Sync status update before the footer was mounted: {e}")
            return
        if not status.is_syncing and self.last_view is not None:
            self.call_later(self.action_refresh_list)

    # --- Actions ---
    async def action_sync_now(self) -> None:
        if self.service is None:
            return
        if not self.service.is_online:
            self.notify("Offline: records will sync when the connection returns.", severity="warning")
            return
        result = await self.service.trigger_sync("manual")
        if result is not None:
            self.notify(f"Sync finished: {len(result.synced)} synced, {len(result.failed) + len(result.rejected)} failed.")

    def action_toggle_online(self) -> None:
        """Manual override of the connectivity signal, for field use when the OS reports it wrongly."""
        if self.service is None:
            return
        self.service.connectivity.set_online(not self.service.is_online)

    async def action_refresh_list(self) -> None:
        if self.service is None:
            return
        view = await self.service.list_merged(self.kind)
        self.last_view = view
        table = self.query_one("#records-table", DataTable)
        table.clear()
        for item in view.items:
            data = item.data
            title = data.get("municipio") or data.get("name") or ""
            detail = data.get("needType") or data.get("phone") or ""
            if item.needs_review:
                state = "Review"
            else:
                state = "Pending" if item.is_pending else "Synced"
            table.add_row(state, str(title), str(detail), str(item.captured_at or ""), item.remote_id or "")
        source = "server + local" if view.server_available else "local only"
        self.query_one("#list-summary", Static).update(
            f"{view.total_count} records ({view.local_only_count} not yet on server, {source}), "
            f"page {view.page}/{view.pages}")


def main():
    # Loads (and on first run creates) the config file before any sink needs its paths
    load_settings()
    configure_logging(console=False)
    logger.info("-" * 30)
    logger.info("Starting Incident Sync")
    app_instance = IncidentSyncApp()
    try:
        app_instance.run()
    except Exception:
        logger.exception("--- CRITICAL ERROR DURING app.run() ---")
        raise
    finally:
        logger.info("Incident Sync finished.")


# --- Main execution block ---
if __name__ == "__main__":
    main()

#
# End of app.py
########################################################################################################################
