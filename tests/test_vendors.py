"""
Vendor registry tests: admin CRUD, form validation messages, verification
and category matching for assignment.
"""

import uuid

import pytest

pytestmark = pytest.mark.asyncio

VENDOR = {
    "name": "Damodar Plumbing Co.",
    "email": "Help@DamodarPlumbing.in",
    "phone": "9431000004",
    "specialities": "Water/Drainage, Road/Sidewalk",
    "location": "Bokaro",
    "description": "Drain cleaning and pipeline leaks",
    "base_quote": "6000",
}


class TestVendorCRUD:
    async def test_add_vendor_defaults(self, client, admin_headers):
        resp = await client.post("/vendors", json=VENDOR, headers=admin_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["specialities"] == ["Water/Drainage", "Road/Sidewalk"]
        assert data["email"] == "help@damodarplumbing.in"
        assert data["base_quote"] == 6000
        assert data["rating"] == 0
        assert data["total_jobs"] == 0
        assert data["verified"] is False

    @pytest.mark.parametrize("field", ["name", "email", "phone", "base_quote"])
    async def test_missing_required_field(self, client, admin_headers, field):
        payload = dict(VENDOR, **{field: ""})
        resp = await client.post("/vendors", json=payload, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Please fill in all required fields including pricing"

    @pytest.mark.parametrize("quote", ["abc", "-50", "0"])
    async def test_invalid_base_quote(self, client, admin_headers, quote):
        resp = await client.post("/vendors", json=dict(VENDOR, base_quote=quote), headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Please enter a valid base quote amount"

    async def test_list_get_update_delete(self, client, admin_headers):
        created = (await client.post("/vendors", json=VENDOR, headers=admin_headers)).json()

        resp = await client.get("/vendors", headers=admin_headers)
        assert [v["id"] for v in resp.json()] == [created["id"]]

        resp = await client.get(f"/vendors/{created['id']}", headers=admin_headers)
        assert resp.json()["name"] == VENDOR["name"]

        resp = await client.put(f"/vendors/{created['id']}", headers=admin_headers,
                                json=dict(VENDOR, name="Damodar Plumbing", base_quote=7500.5))
        assert resp.status_code == 200
        assert resp.json()["name"] == "Damodar Plumbing"
        assert resp.json()["base_quote"] == 7500.5

        resp = await client.delete(f"/vendors/{created['id']}", headers=admin_headers)
        assert resp.status_code == 200
        resp = await client.get(f"/vendors/{created['id']}", headers=admin_headers)
        assert resp.status_code == 404

    async def test_update_missing_vendor(self, client, admin_headers):
        resp = await client.put(f"/vendors/{uuid.uuid4()}", json=VENDOR, headers=admin_headers)
        assert resp.status_code == 404

    async def test_delete_missing_vendor(self, client, admin_headers):
        resp = await client.delete(f"/vendors/{uuid.uuid4()}", headers=admin_headers)
        assert resp.status_code == 404

    async def test_verify_and_unverify(self, client, admin_headers):
        created = (await client.post("/vendors", json=VENDOR, headers=admin_headers)).json()
        resp = await client.put(f"/vendors/{created['id']}/verify", headers=admin_headers)
        assert resp.json()["verified"] is True
        resp = await client.put(f"/vendors/{created['id']}/verify", params={"verified": "false"},
                                headers=admin_headers)
        assert resp.json()["verified"] is False

    async def test_citizen_cannot_manage_vendors(self, client, citizen_headers):
        resp = await client.get("/vendors", headers=citizen_headers)
        assert resp.status_code == 403
        resp = await client.post("/vendors", json=VENDOR, headers=citizen_headers)
        assert resp.status_code == 403


class TestVendorMatching:
    async def _seed(self, client, admin_headers):
        ids = {}
        for name, specialities in [("Roads", ["Road/Sidewalk"]), ("Lights", ["Street Lighting"]),
                                   ("Generalist", [])]:
            resp = await client.post("/vendors", headers=admin_headers, json=dict(
                VENDOR, name=name, specialities=specialities))
            ids[name] = resp.json()["id"]
        return ids

    async def test_matching_vendors_for_issue(self, client, citizen_headers, admin_headers, new_issue):
        await self._seed(client, admin_headers)
        issue = await new_issue(client, citizen_headers, category="Road/Sidewalk")
        resp = await client.get(f"/issues/{issue['id']}/vendors", headers=admin_headers)
        assert resp.status_code == 200
        assert sorted(v["name"] for v in resp.json()) == ["Generalist", "Roads"]

    async def test_list_vendors_by_category(self, client, admin_headers):
        await self._seed(client, admin_headers)
        resp = await client.get("/vendors", params={"category": "Street Lighting"}, headers=admin_headers)
        assert sorted(v["name"] for v in resp.json()) == ["Generalist", "Lights"]
