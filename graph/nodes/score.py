from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from graph.nodes.capture import LeadSubmission
from graph.state import LeadState
from loguru import logger

SOURCE_SCORES = {
    "hero_demo": 85,         # primary CTA
    "calculator": 70,        # tool engagement
    "contact_form": 60,
    "pricing_inquiry": 75,   # commercial intent
    "footer_demo": 65,
    "newsletter": 25,        # nurture
    "resource_download": 45, # education phase
}

SERVICE_SCORES = {
    "enterprise": 25,
    "growth": 20,
    "foundation": 15,
    "consultation": 10,
    "other": 5,
}

COMPLETENESS_POINTS = {
    "first_name": 5,
    "last_name": 5,
    "company": 10,
    "website": 15,
    "phone": 10,
}
DETAILED_MESSAGE_LENGTH = 20
DETAILED_MESSAGE_POINTS = 10

# (keywords, points, tag); every set is checked independently
INTENT_SIGNALS = (
    (("urgent", "asap", "immediately", "quickly", "deadline"), 20, "urgent_timeline"),
    (("budget", "investment", "cost", "price", "quote"), 15, "budget_discussion"),
    (("timeline", "when", "schedule", "launch", "start"), 10, "timeline_defined"),
    (("struggling", "problem", "issue", "losing", "frustrated"), 10, "pain_point_identified"),
)

WEBSITE_BONUS = 5
MAX_SCORE = 100

# Order matters: the first matching industry wins
INDUSTRY_RULES = (
    ("industry_ecommerce", ("shopify",), ("ecommerce", "shop")),
    ("industry_saas", ("saas",), ("software", "app")),
    ("industry_healthcare", (), ("health", "medical", "clinic")),
    ("industry_legal", (), ("law", "legal", "attorney")),
    ("industry_realestate", (), ("real estate", "property", "realty")),
)

PRIORITY_THRESHOLDS = ((100, "urgent"), (75, "high"), (50, "medium"))

# Reserved for on-site behaviour; session data is not fed back into scoring yet.
ENGAGEMENT_SCORE_PLACEHOLDER = 0


@dataclass(frozen=True)
class ScoreBreakdown:
    source: int = 0
    completeness: int = 0
    engagement: int = ENGAGEMENT_SCORE_PLACEHOLDER
    intent: int = 0


@dataclass(frozen=True)
class LeadScore:
    total: int
    breakdown: ScoreBreakdown
    tags: Tuple[str, ...]
    priority: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "breakdown": asdict(self.breakdown),
            "tags": list(self.tags),
            "priority": self.priority,
        }


def priority_for(total: int) -> str:
    """Map a capped total onto its priority tier."""
    for threshold, priority in PRIORITY_THRESHOLDS:
        if total >= threshold:
            return priority
    return "low"


def completeness_score(lead: LeadSubmission) -> int:
    score = sum(points for name, points in COMPLETENESS_POINTS.items() if getattr(lead, name))
    if lead.message and len(lead.message) > DETAILED_MESSAGE_LENGTH:
        score += DETAILED_MESSAGE_POINTS
    return score


def intent_signals(message: Optional[str]) -> Tuple[int, List[str]]:
    """Score free text against the keyword sets; returns (points, tags)."""
    if not message:
        return 0, []

    text = message.lower()
    points = 0
    tags = []
    for keywords, bonus, tag in INTENT_SIGNALS:
        if any(keyword in text for keyword in keywords):
            points += bonus
            tags.append(tag)
    return points, tags


def infer_industry(email: Optional[str], company: Optional[str]) -> Optional[str]:
    """Guess the industry tag from the email domain and company name."""
    domain = ""
    if email and "@" in email:
        domain = email.split("@")[1].lower()
    name = (company or "").lower()

    for tag, domain_hints, company_hints in INDUSTRY_RULES:
        if any(hint in domain for hint in domain_hints) or any(hint in name for hint in company_hints):
            return tag
    return None


def calculate_lead_score(lead: LeadSubmission) -> LeadScore:
    """Rule-based score for a submitted lead.

    Deterministic and total: fields that are missing contribute nothing.
    The cap is applied once, after every additive term.
    """
    tags: List[str] = []

    # Tags are emitted in rule order and are unique; CRM tagging treats them as a set
    def tag(label: str) -> None:
        if label not in tags:
            tags.append(label)

    source = SOURCE_SCORES.get(lead.source, 0)
    tag(f"source_{lead.source}")

    completeness = completeness_score(lead)

    intent, intent_tags = intent_signals(lead.message)
    for label in intent_tags:
        tag(label)

    running = source + completeness + intent

    if lead.website:
        tag("website_provided")
        running += WEBSITE_BONUS

    if lead.service:
        running += SERVICE_SCORES.get(lead.service, 0)
        tag(f"service_{lead.service}")

    total = max(0, min(MAX_SCORE, running))
    priority = priority_for(total)
    tag(f"priority_{priority}")

    industry = infer_industry(lead.email, lead.company)
    if industry:
        tag(industry)

    return LeadScore(
        total=total,
        breakdown=ScoreBreakdown(
            source=source,
            completeness=completeness,
            engagement=ENGAGEMENT_SCORE_PLACEHOLDER,
            intent=intent,
        ),
        tags=tuple(tags),
        priority=priority,
    )


def score(state: LeadState) -> LeadState:
    """Score the captured submission."""
    logger.info(f"Starting scoring for lead: {state.get('lead_id', 'unknown')}")

    lead_score = calculate_lead_score(state["submission"])
    state["lead_score"] = lead_score

    logger.info(
        f"Final score: {lead_score.total} ({lead_score.priority}) for {state.get('lead_id')}, "
        f"breakdown={asdict(lead_score.breakdown)}"
    )
    return state
