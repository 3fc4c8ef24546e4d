# Issue search / filter composition and vendor matching

import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from .models import IssueCategory, IssueStatus

ALL = "all"
UNASSIGNED = "unassigned"

# Fields a free-text search looks at
SEARCH_FIELDS = ("title", "description", "location.address")

def to_naive_utc(value: datetime) -> datetime:
    """MongoDB stores naive UTC datetimes; normalise query bounds to match."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value

def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def build_issue_query(search: str = "", status: str = ALL, category: str = ALL,
                      assignee: str = ALL, reported_by: Optional[str] = None,
                      updated_since: Optional[datetime] = None) -> Dict:
    """Compose the issue list predicates into one MongoDB filter.

    Every predicate is optional and they are AND-ed together:

    * ``search`` matches title, description or address, case-insensitively.
      The text is used as typed, so surrounding spaces are part of it.
    * ``status`` / ``category`` are ``"all"`` or a single value.
    * ``assignee`` is ``"all"``, ``"unassigned"`` or an exact assignee name.
    * ``reported_by`` restricts to one reporter (used for the citizen view).
    * ``updated_since`` returns only issues changed after the timestamp, which
      is how clients poll for live updates.

    Raises ``ValueError`` for a status or category outside the known values.
    """
    clauses: List[Dict] = []
    search = search or ""
    if search:
        pattern = re.escape(search)
        clauses.append({"$or": [{f: {"$regex": pattern, "$options": "i"}} for f in SEARCH_FIELDS]})
    if status and status != ALL:
        if status not in [s.value for s in IssueStatus]:
            raise ValueError(f"Invalid status filter: {status}")
        clauses.append({"status": status})
    if category and category != ALL:
        if category not in [c.value for c in IssueCategory]:
            raise ValueError(f"Invalid category filter: {category}")
        clauses.append({"category": category})
    if assignee and assignee != ALL:
        if assignee == UNASSIGNED:
            clauses.append({"$or": [{"assigned_to": None}, {"assigned_to": ""}]})
        else:
            clauses.append({"assigned_to": assignee})
    if reported_by:
        clauses.append({"reported_by": reported_by})
    if updated_since is not None:
        clauses.append({"updated_at": {"$gt": to_naive_utc(updated_since)}})

    if not clauses:
        return {}
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}

def reporter_query(email: str) -> Dict:
    """Case-insensitive exact match on the reporter's email."""
    return {"reported_by": {"$regex": f"^{re.escape(email.strip())}$", "$options": "i"}}

def collect_facets(issues: Iterable[dict]) -> Dict[str, List[str]]:
    """Distinct non-blank categories and non-empty assignees, for filter menus."""
    categories, assignees = set(), set()
    for issue in issues:
        cat = issue.get("category")
        if cat and cat.strip():
            categories.add(cat)
        who = issue.get("assigned_to")
        if who:
            assignees.add(who)
    return {"categories": sorted(categories), "assignees": sorted(assignees)}

def match_vendors(vendors: List[dict], category: Optional[str]) -> List[dict]:
    # Generalists (no specialities) always qualify; fall back to everyone
    # when nobody matches so the admin can still assign.
    if not category:
        return list(vendors)
    relevant = [v for v in vendors
                if not v.get("specialities") or category in v.get("specialities", [])]
    return relevant if relevant else list(vendors)
