from typing import TypedDict, Optional, List, Dict, Any

class LeadState(TypedDict, total=False):
    """State shape for the lead intake workflow."""
    lead_id: str
    raw: Dict[str, Any]              # form fields or JSON body as submitted
    headers: Dict[str, str]          # user-agent / referer of the submitting request
    submission: Any                  # LeadSubmission, absent when validation failed
    lead_score: Any                  # LeadScore
    workflow_id: Optional[str]       # CRM follow-up workflow for source x priority
    crm_contact: Dict[str, Any]      # contact payload handed to the CRM transport
    route_reason: str
    errors: List[str]
