# Seed data: Vendors (local contractors, one or more per category)

from . import new_id, now_utc

VENDORS = [
    {"name": "Jharkhand Road Works", "email": "contact@jhroadworks.in", "phone": "9431000001",
     "specialities": ["Road/Sidewalk"], "location": "Ranchi",
     "rating": 4.5, "total_jobs": 38, "base_quote": 15000,
     "description": "Pothole repair, resurfacing and footpath work.", "verified": True},

    {"name": "Bright Lights Electricals", "email": "service@brightlights.in", "phone": "9431000002",
     "specialities": ["Street Lighting"], "location": "Dhanbad",
     "rating": 4.2, "total_jobs": 54, "base_quote": 2500,
     "description": "Street lamp installation and repair.", "verified": True},

    {"name": "Swachh Ranchi Services", "email": "ops@swachhranchi.in", "phone": "9431000003",
     "specialities": ["Waste Management", "Parks/Recreation"], "location": "Ranchi",
     "rating": 4.0, "total_jobs": 21, "base_quote": 4000,
     "description": "Garbage clearance and park upkeep.", "verified": False},

    {"name": "Damodar Plumbing Co.", "email": "help@damodarplumbing.in", "phone": "9431000004",
     "specialities": ["Water/Drainage"], "location": "Bokaro",
     "rating": 3.8, "total_jobs": 17, "base_quote": 6000,
     "description": "Drain cleaning, pipeline leaks and waterlogging.", "verified": True},

    {"name": "Steel City General Contractors", "email": "info@steelcitygc.in", "phone": "9431000005",
     "specialities": [], "location": "Jamshedpur",
     "rating": 3.5, "total_jobs": 9, "base_quote": 8000,
     "description": "General civic maintenance.", "verified": False},
]

async def import_vendors(db) -> dict:
    """Insert seed vendors. Returns {name: _id} mapping."""
    print("\n  Importing vendors...")
    vendor_ids = {}
    for v in VENDORS:
        vid = new_id()
        now = now_utc()
        db.vendors.insert_one({"_id": vid, **v, "created_at": now, "updated_at": now})
        vendor_ids[v["name"]] = vid
        print(f"    {v['name']:35s}  {', '.join(v['specialities']) or 'general'}")
    db.vendors.create_index("created_at")
    print(f"  => {len(VENDORS)} vendors created")
    return vendor_ids
