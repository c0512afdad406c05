import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from graph.state import LeadState
from loguru import logger

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DEFAULT_SOURCE = "contact_form"

LEAD_SOURCES = (
    "hero_demo",
    "contact_form",
    "calculator",
    "newsletter",
    "footer_demo",
    "pricing_inquiry",
    "resource_download",
)


@dataclass(frozen=True)
class LeadSubmission:
    """A lead as submitted through one of the site's forms."""
    email: str
    source: str = DEFAULT_SOURCE
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    website: Optional[str] = None
    phone: Optional[str] = None
    service: Optional[str] = None
    message: Optional[str] = None
    received_at: Optional[datetime] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None


class LeadValidationError(ValueError):
    """Raised when a payload cannot become a LeadSubmission."""


def _field(raw: Dict[str, Any], *names: str) -> Optional[str]:
    for name in names:
        value = raw.get(name)
        if value is None:
            continue
        value = str(value).strip()
        if value:
            return value
    return None


def build_submission(raw: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> LeadSubmission:
    """Map a raw form/JSON payload onto a LeadSubmission.

    Accepts camelCase (as posted by the site forms) and snake_case keys.
    A single ``name`` field is split on the first space when first/last
    names are not given separately.
    """
    headers = headers or {}

    email = _field(raw, "email")
    if not email:
        raise LeadValidationError("Email is required")
    if not EMAIL_PATTERN.match(email):
        raise LeadValidationError("Please enter a valid email address")

    name = _field(raw, "name", "full_name")
    first_name = _field(raw, "firstName", "first_name")
    last_name = _field(raw, "lastName", "last_name")
    if name:
        parts = name.split(" ")
        first_name = first_name or parts[0] or None
        last_name = last_name or " ".join(parts[1:]).strip() or None

    message = _field(raw, "message")
    if not message and raw.get("answers"):
        # Quiz-style forms post structured answers instead of free text
        message = json.dumps(raw["answers"])

    return LeadSubmission(
        email=email,
        source=_field(raw, "source", "formType", "form_type") or DEFAULT_SOURCE,
        first_name=first_name,
        last_name=last_name,
        company=_field(raw, "company", "company_name"),
        website=_field(raw, "website"),
        phone=_field(raw, "phone"),
        service=_field(raw, "service"),
        message=message,
        received_at=datetime.now(timezone.utc),
        user_agent=_field(headers, "user-agent"),
        referrer=_field(headers, "referer"),
    )


def capture(state: LeadState) -> LeadState:
    """Normalize and validate an incoming lead payload."""
    raw = state.get("raw", {})
    logger.info(f"Starting capture for lead: {raw.get('email', 'unknown')}")

    try:
        submission = build_submission(raw, state.get("headers"))
    except LeadValidationError as e:
        logger.warning(f"Lead rejected: {e}")
        state.setdefault("errors", []).append(f"validation: {e}")
        return state

    state["submission"] = submission
    state["lead_id"] = raw.get("id") or submission.email.lower()

    logger.info(f"Capture completed for {state['lead_id']} (source={submission.source})")
    return state
