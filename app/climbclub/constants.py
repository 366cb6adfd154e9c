"""
Central constants for the club application.
"""
from __future__ import annotations

ROLE_MEMBER = "member"
ROLE_COMMITTEE = "committee"

# Order matters: the first held role is reported as the primary one.
COMMITTEE_ROLES = (
    "Chair",
    "Secretary",
    "Treasurer",
    "Welfare & Inclusions",
    "Team Captain",
    "Social Sec",
    "Women's Captain",
    "Men's Captain",
    "Publicity",
    "Kit & Safety Sec",
)
KIT_SEC_ROLE = "Kit & Safety Sec"

STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"
STATUS_REJECTED = "rejected"
MEMBERSHIP_STATUSES = frozenset({STATUS_PENDING, STATUS_ACTIVE, STATUS_REJECTED})

# Higher wins when two writers race on the same membership row.
STATUS_PRIORITY = {STATUS_REJECTED: 0, STATUS_PENDING: 1, STATUS_ACTIVE: 2}

BASIC_MEMBERSHIP = "basic"

DEFAULT_MEMBERSHIP_TYPES = (
    ("basic", "Basic"),
    ("bouldering", "Bouldering"),
    ("comp_team", "Comp Team"),
)
DEFAULT_SESSION_TYPES = ("Social", "Squad", "Rope", "Competition")

VISIBILITY_ALL = "all"
VISIBILITY_COMMITTEE_ONLY = "committee_only"

GEAR_PENDING = "pending"
GEAR_APPROVED = "approved"
GEAR_REJECTED = "rejected"
GEAR_RETURNED = "returned"

REFERENDUM_CHOICES = ("yes", "no", "abstain")

# Fixed duration of a calendar event exported for a session.
SESSION_DURATION_HOURS = 2

# Lifetime of emailed verification codes and password reset links.
VERIFICATION_CODE_TTL_MINUTES = 15
PASSWORD_RESET_TTL_MINUTES = 15
