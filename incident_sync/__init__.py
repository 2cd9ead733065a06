# incident_sync
# Offline-first capture and sync for citizen incident reports.

__version__ = "0.1.0"
