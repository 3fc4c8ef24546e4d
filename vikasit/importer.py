# Vikasit Jharkhand - Seed Data Importer
# Resets the portal's MongoDB collections and loads demo data
#
# Usage:  python -m vikasit.importer   (from repo root)
#     or: vikasit-import

import asyncio

from pymongo import MongoClient

from .config import MONGODB_URL, MONGODB_DB, BUILTIN_ADMIN_EMAIL
from .portal import ensure_indexes
from .seed.users import import_users, USERS
from .seed.vendors import import_vendors, VENDORS
from .seed.issues import import_issues, ISSUES

async def main():
    print("=" * 64)
    print("  Vikasit Jharkhand Civic Issue Portal - Data Importer")
    print("=" * 64)

    # ------------------------------------------------------------------
    # 1. Connect MongoDB
    # ------------------------------------------------------------------
    print("\n[1/5] Connecting to MongoDB...")
    mongo_client = MongoClient(MONGODB_URL)
    db = mongo_client[MONGODB_DB]
    print(f"  Connected: {MONGODB_URL} ({MONGODB_DB})")

    # ------------------------------------------------------------------
    # 2. Reset all collections
    # ------------------------------------------------------------------
    print("\n[2/5] Resetting collections...")
    for coll_name in ["issues", "users", "vendors", "notifications", "fs.files", "fs.chunks"]:
        db[coll_name].drop()
    print("  MongoDB: issues, users, vendors, notifications,")
    print("           fs.files, fs.chunks (GridFS)")
    ensure_indexes(db)

    # ------------------------------------------------------------------
    # 3. Seed users
    # ------------------------------------------------------------------
    print("\n[3/5] Users")
    await import_users(db)

    # ------------------------------------------------------------------
    # 4. Seed vendors
    # ------------------------------------------------------------------
    print("\n[4/5] Vendors")
    vendor_ids = await import_vendors(db)

    # ------------------------------------------------------------------
    # 5. Seed issues
    # ------------------------------------------------------------------
    print("\n[5/5] Issues")
    await import_issues(db, vendor_ids, BUILTIN_ADMIN_EMAIL)

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------
    print("\n" + "=" * 64)
    print("  IMPORT COMPLETE")
    print("=" * 64)
    print(f"  Users:    {len(USERS)}")
    print(f"  Vendors:  {len(VENDORS)}")
    print(f"  Issues:   {len(ISSUES)}")
    print()
    print("  Test credentials:")
    for u in USERS:
        print(f"    {u['email']:40s} / {u['password']:12s} ({u['role']})")
    print()
    mongo_client.close()

def run():
    asyncio.run(main())

if __name__ == "__main__":
    run()
