"""
Role x category permission matrix for booking documents.

Organization roles (owner, manager, team_lead) act as admins here;
anyone who is neither an admin nor a specialist is treated as a referrer.
"""

from typing import Optional

CATEGORIES = ("consent_form", "document_brief", "dictation", "draft_report", "final_report")
SECTIONS = ("ime_documents", "supplementary_documents")
PERMISSIONS = ("upload", "download", "delete")

_ALL = frozenset(PERMISSIONS)
_NONE: frozenset = frozenset()

PERMISSION_MATRIX: dict[str, dict[str, frozenset]] = {
    "referrer": {
        "consent_form": _ALL,
        "document_brief": _ALL,
        "dictation": _NONE,
        "draft_report": _NONE,
        "final_report": frozenset({"download"}),
    },
    "specialist": {
        "consent_form": _NONE,
        "document_brief": frozenset({"download"}),
        "dictation": _ALL,
        "draft_report": _ALL,
        "final_report": _ALL,
    },
    "admin": {category: _ALL for category in CATEGORIES},
}


def has_permission(role: str, category: str, permission: str) -> bool:
    return permission in PERMISSION_MATRIX.get(role, {}).get(category, _NONE)


def get_permissions(role: str, category: str) -> list[str]:
    allowed = PERMISSION_MATRIX.get(role, {}).get(category, _NONE)
    return [p for p in PERMISSIONS if p in allowed]


def get_allowed_categories(role: str, permission: str) -> list[str]:
    return [c for c in CATEGORIES if has_permission(role, c, permission)]


def get_download_format(role: str, category: str) -> str:
    # Referrers only ever receive the final report as a PDF
    if role == "referrer" and category == "final_report":
        return "pdf_only"
    return "original"


def get_user_role(role: Optional[str]) -> str:
    if role in ("admin", "owner", "manager", "team_lead"):
        return "admin"
    if role == "specialist":
        return "specialist"
    return "referrer"


def get_available_categories_for_section(section: str, role: str, permission: str = "upload") -> list[str]:
    categories = get_allowed_categories(role, permission)
    if section == "supplementary_documents":
        return [c for c in categories if c != "consent_form"]
    return categories
