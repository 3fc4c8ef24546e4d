"""
Status-change notification tests: opt-in gating, message text and the
per-user notification feed.
"""

import uuid

import mongomock
import pytest

from vikasit.notifications import (
    NOTIFICATION_TITLE, build_issue_update_notification, notify_status_change, status_message,
)



class TestMessages:
    def test_status_messages(self):
        assert status_message("acknowledged") == "Your report has been acknowledged"
        assert status_message("in-progress") == "Work has started on your report"
        assert status_message("resolved") == "Your report has been resolved"
        assert status_message("reported") == "Your report status has been updated"

    def test_build_notification(self):
        doc = build_issue_update_notification("a@example.com", "issue-1", "Broken light", "resolved")
        assert doc["title"] == NOTIFICATION_TITLE
        assert doc["body"] == "Your report has been resolved: Broken light"
        assert doc["tag"] == "issue-update-resolved"
        assert doc["read"] is False

    def test_no_notification_for_unknown_reporter(self):
        db = mongomock.MongoClient()["notify_test"]
        issue = {"_id": "i1", "title": "T", "reported_by": "ghost@example.com"}
        assert notify_status_change(db, issue, "resolved") is None
        assert db.notifications.count_documents({}) == 0


@pytest.mark.asyncio
class TestNotificationFeed:
    async def test_opted_out_citizen_gets_nothing(self, client, citizen_headers, admin_headers, new_issue):
        issue = await new_issue(client, citizen_headers)
        await client.put(f"/issues/{issue['id']}/status", params={"new_status": "acknowledged"},
                         headers=admin_headers)
        resp = await client.get("/notifications", headers=citizen_headers)
        assert resp.status_code == 200
        assert resp.json() == []

    async def test_opted_in_citizen_is_notified(self, client, citizen_headers, admin_headers, new_issue):
        await client.put("/auth/me/notification-preference", json={"enabled": True}, headers=citizen_headers)
        issue = await new_issue(client, citizen_headers, title="Broken light")
        await client.put(f"/issues/{issue['id']}/status", params={"new_status": "acknowledged"},
                         headers=admin_headers)
        resp = await client.get("/notifications", headers=citizen_headers)
        feed = resp.json()
        assert len(feed) == 1
        assert feed[0]["issue_id"] == issue["id"]
        assert feed[0]["body"] == "Your report has been acknowledged: Broken light"
        assert feed[0]["read"] is False

    async def test_vendor_assignment_notifies(self, client, citizen_headers, admin_headers, new_issue):
        await client.put("/auth/me/notification-preference", json={"enabled": True}, headers=citizen_headers)
        issue = await new_issue(client, citizen_headers)
        vendor = (await client.post("/vendors", headers=admin_headers, json={
            "name": "Roads Co", "email": "r@example.com", "phone": "1", "base_quote": 100,
        })).json()
        await client.put(f"/issues/{issue['id']}/assign-vendor", json={"vendor_id": vendor["id"]},
                         headers=admin_headers)
        feed = (await client.get("/notifications", headers=citizen_headers)).json()
        assert [n["tag"] for n in feed] == ["issue-update-in-progress"]

    async def test_mark_read(self, client, citizen_headers, admin_headers, new_issue):
        await client.put("/auth/me/notification-preference", json={"enabled": True}, headers=citizen_headers)
        issue = await new_issue(client, citizen_headers)
        await client.put(f"/issues/{issue['id']}/status", params={"new_status": "resolved"},
                         headers=admin_headers)
        note = (await client.get("/notifications", headers=citizen_headers)).json()[0]
        resp = await client.put(f"/notifications/{note['id']}/read", headers=citizen_headers)
        assert resp.status_code == 200
        assert resp.json()["read"] is True
        resp = await client.get("/notifications", params={"unread_only": "true"}, headers=citizen_headers)
        assert resp.json() == []

    async def test_cannot_mark_someone_elses_notification(self, client, citizen_headers, other_citizen_headers,
                                                          admin_headers, new_issue):
        await client.put("/auth/me/notification-preference", json={"enabled": True}, headers=citizen_headers)
        issue = await new_issue(client, citizen_headers)
        await client.put(f"/issues/{issue['id']}/status", params={"new_status": "resolved"},
                         headers=admin_headers)
        note = (await client.get("/notifications", headers=citizen_headers)).json()[0]
        resp = await client.put(f"/notifications/{note['id']}/read", headers=other_citizen_headers)
        assert resp.status_code == 404

    async def test_mark_unknown_notification(self, client, citizen_headers):
        resp = await client.put(f"/notifications/{uuid.uuid4()}/read", headers=citizen_headers)
        assert resp.status_code == 404
