import os
from pathlib import Path

REQUEST_TIMEOUT_SECONDS: int = 10
POLL_INTERVAL_SECONDS: int = 3600   # one re-check per hour per tracked case

BASE_URL: str = "https://my.uscis.gov"
USER_AGENT: str = "CaseTracker/1.0 (case-tracker)"

# source id -> endpoint path, {entity_id} is the receipt number
SOURCES: dict[str, str] = {
    "caseDetails": "/account/case-service/api/cases/{entity_id}",
    "caseStatus":  "/account/case-service/api/case_status/{entity_id}",
    "receiptInfo": "/secure-messaging/api/case-service/receipt_info/{entity_id}",
}

STORE_PATH: Path = Path(
    os.environ.get("CASE_TRACKER_STORE", Path.home() / ".case_tracker" / "store.json")
)

NO_DATA_MESSAGE: str = (
    "All API calls failed. Make sure you are logged in to my.uscis.gov."
)
