# Constants.py
# Description: Constants for the incident sync client
#
# Imports
#
# 3rd-Party Imports
#
# Local Imports
#
########################################################################################################################
#
# Functions:

# --- Record Kinds ---
KIND_REPORT = "report"
KIND_PERSON = "person"
ALL_KINDS = [KIND_REPORT, KIND_PERSON]

# Remote collection for each record kind
KIND_COLLECTIONS = {
    KIND_REPORT: "reports",
    KIND_PERSON: "people",
}

# --- Remote API ---
API_PREFIX = "/api"
IDEMPOTENCY_HEADER = "Idempotency-Key"
# Status codes the server uses for requests it will never accept as sent
PERMANENT_REJECT_STATUS_CODES = frozenset({400, 409, 413, 422})
AUTH_FAILURE_STATUS_CODES = frozenset({401, 403})
DEFAULT_PAGE_SIZE = 20

# --- Sync Defaults ---
DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_SUBMIT_TIMEOUT_SECONDS = 15.0
DEFAULT_API_TIMEOUT_SECONDS = 30.0

# Fields that only exist on the device and must never reach the server
LOCAL_ONLY_FIELDS = frozenset({
    "local_key", "localKey", "id", "synced", "sync_state", "syncState",
    "remote_id", "remoteId", "_id", "idempotency_key", "attempt_count",
    "last_error", "last_attempt_at", "needs_review",
})

# --- Status Display ---
STATUS_ONLINE = "Online"
STATUS_OFFLINE = "Offline"
STATUS_SYNCING = "Syncing..."

#
# End of Constants.py
########################################################################################################################
