# Issue status-update notifications

import uuid
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "Vikasit Jharkhand - Issue Update"

STATUS_MESSAGES = {
    "acknowledged": "Your report has been acknowledged",
    "in-progress": "Work has started on your report",
    "resolved": "Your report has been resolved",
}
DEFAULT_STATUS_MESSAGE = "Your report status has been updated"

def status_message(status: str) -> str:
    return STATUS_MESSAGES.get(status, DEFAULT_STATUS_MESSAGE)

def build_issue_update_notification(user_email: str, issue_id: str,
                                    issue_title: str, new_status: str) -> dict:
    return {
        "_id": str(uuid.uuid4()),
        "user_email": user_email,
        "issue_id": issue_id,
        "title": NOTIFICATION_TITLE,
        "body": f"{status_message(new_status)}: {issue_title}",
        "tag": f"issue-update-{new_status}",
        "status": new_status,
        "read": False,
        "created_at": datetime.now(timezone.utc),
    }

def notify_status_change(db, issue: dict, new_status: str) -> Optional[dict]:
    """Queue a notification for the issue's reporter.

    Runs inside the executor. Nothing is stored unless the reporter has
    turned notifications on.
    """
    reporter = db.users.find_one({"email": issue["reported_by"]})
    if not reporter or not reporter.get("notifications_enabled", False):
        return None
    doc = build_issue_update_notification(
        issue["reported_by"], str(issue["_id"]), issue["title"], new_status)
    db.notifications.insert_one(doc)
    logger.info("Notified %s: issue %s is now %s", issue["reported_by"], issue["_id"], new_status)
    return doc
