# Seed data: Issues covering every status and category
#
# Coverage:
#   Statuses  : reported, acknowledged, in-progress, resolved
#   Assignment: unassigned, named assignee, vendor
#   Location  : Jharkhand cities plus one report without a GPS fix

from datetime import timedelta

from ..location import get_location_name
from . import new_id, now_utc

ISSUES = [
    {"title": "Large pothole near Firayalal Chowk",
     "description": "A deep pothole in the middle of Main Road is damaging two-wheelers.",
     "category": "Road/Sidewalk", "status": "in-progress",
     "lat": 23.3629, "lng": 85.3245, "reporter": "demo@vikasitjharkhand.gov.in",
     "vendor": "Jharkhand Road Works"},

    {"title": "Street lights out on Bank More",
     "description": "Five consecutive street lamps have not worked for a week.",
     "category": "Street Lighting", "status": "acknowledged",
     "lat": 23.7925, "lng": 86.4289, "reporter": "rakesh.mahto@email.com"},

    {"title": "Garbage pile-up behind the market",
     "description": "Waste has not been collected for ten days and stray animals are spreading it.",
     "category": "Waste Management", "status": "reported",
     "lat": 23.3512, "lng": 85.3198, "reporter": "demo@vikasitjharkhand.gov.in"},

    {"title": "Blocked drain floods Sakchi lane",
     "description": "Every rain floods the lane because the drain is choked with silt.",
     "category": "Water/Drainage", "status": "resolved",
     "lat": 22.8016, "lng": 86.2035, "reporter": "sunita.oraon@email.com",
     "vendor": "Damodar Plumbing Co."},

    {"title": "Broken swings in Jubilee Park",
     "description": "Two swings have snapped chains and are unsafe for children.",
     "category": "Parks/Recreation", "status": "reported",
     "lat": 22.8100, "lng": 86.1910, "reporter": "sunita.oraon@email.com"},

    {"title": "Graffiti on the temple boundary wall",
     "description": "The freshly painted wall near Baba Dham has been defaced overnight.",
     "category": "Vandalism", "status": "acknowledged",
     "lat": 24.4925, "lng": 86.6999, "reporter": "rakesh.mahto@email.com",
     "assignee": "Ward 4 Maintenance Team"},

    {"title": "Loudspeakers after midnight",
     "description": "A hall in Sector 4 plays loud music past midnight every weekend.",
     "category": "Noise Complaint", "status": "reported",
     "lat": 23.6690, "lng": 85.9700, "reporter": "demo@vikasitjharkhand.gov.in"},

    {"title": "Open manhole on school route",
     "description": "The manhole cover is missing on the road children take to school.",
     "category": "Public Safety", "status": "resolved",
     "lat": 23.3700, "lng": 85.3300, "reporter": "rakesh.mahto@email.com",
     "assignee": "Municipal Emergency Cell"},

    {"title": "Stray cattle blocking the bus stand",
     "description": "Cattle gather at the bus stand every evening and block the entry.",
     "category": "Other", "status": "reported",
     "lat": 0.0, "lng": 0.0, "address": "Bus Stand Road, Hazaribagh",
     "reporter": "sunita.oraon@email.com"},
]

# Status walk an issue takes to reach its seeded state
_STATUS_PATH = ["acknowledged", "in-progress", "resolved"]

def _history(status: str, reported_at, admin_email: str) -> list:
    if status == "reported":
        return []
    steps = _STATUS_PATH[:_STATUS_PATH.index(status) + 1]
    return [{"status": s, "changed_by": admin_email,
             "changed_at": reported_at + timedelta(hours=6 * (n + 1))}
            for n, s in enumerate(steps)]

async def import_issues(db, vendor_ids: dict, admin_email: str) -> list:
    """Insert seed issues. Returns the inserted docs."""
    print("\n  Importing issues...")
    now = now_utc()
    inserted = []
    for i, g in enumerate(ISSUES):
        # Spread reports over the last fortnight so the weekly trend has data
        reported_at = now - timedelta(days=13 - i, hours=i)
        history = _history(g["status"], reported_at, admin_email)
        assigned_to = g.get("assignee") or g.get("vendor")
        address = g.get("address") or get_location_name(g["lat"], g["lng"])
        doc = {
            "_id": new_id(),
            "title": g["title"],
            "description": g["description"],
            "category": g["category"],
            "status": g["status"],
            "location": {"address": address, "lat": g["lat"], "lng": g["lng"]},
            "image_id": None,
            "image_url": None,
            "image_upload_failed": False,
            "audio_description": None,
            "reported_by": g["reporter"],
            "reported_at": reported_at,
            "assigned_to": assigned_to,
            "assigned_vendor_id": vendor_ids.get(g["vendor"]) if g.get("vendor") else None,
            "status_history": history,
            "created_at": reported_at,
            "updated_at": history[-1]["changed_at"] if history else reported_at,
        }
        db.issues.insert_one(doc)
        inserted.append(doc)
        print(f"    [{g['status']:12s}] {g['title'][:50]}")
    print(f"  => {len(inserted)} issues created")
    return inserted
