import os
import json
from typing import Any, Dict, Optional

from graph.nodes.capture import LeadSubmission
from graph.nodes.score import LeadScore
from graph.state import LeadState
from loguru import logger

# Load routing configuration
ROUTING_CONFIG_PATH = os.getenv("ROUTING_JSON", "./infra/routing.json")
CRM_SOURCE_LABEL = os.getenv("CRM_SOURCE_LABEL", "Website")

def load_routing_rules() -> Dict[str, Dict[str, str]]:
    """Load the source -> priority -> follow-up workflow table."""
    try:
        with open(ROUTING_CONFIG_PATH, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        logger.warning(f"Routing config not found at {ROUTING_CONFIG_PATH}, using defaults")
        return {}
    except json.JSONDecodeError:
        logger.error(f"Invalid JSON in routing config {ROUTING_CONFIG_PATH}")
        return {}

def workflow_for(source: str, priority: str, routes: Dict[str, Dict[str, str]]) -> Optional[str]:
    """Follow-up workflow id for a lead source and priority, if one is configured."""
    by_priority = routes.get(source) or {}
    return by_priority.get(priority) or None

def format_crm_contact(lead: LeadSubmission, lead_score: LeadScore) -> Dict[str, Any]:
    """Build the contact payload the CRM transport sends."""
    return {
        "firstName": lead.first_name,
        "lastName": lead.last_name,
        "email": lead.email,
        "phone": lead.phone,
        "website": lead.website,
        "companyName": lead.company,
        "source": f"{CRM_SOURCE_LABEL} - {lead.source}",
        "tags": list(dict.fromkeys([
            *lead_score.tags,
            f"lead_score_{lead_score.total}",
            f"priority_{lead_score.priority}",
        ])),
        "customFields": {
            "lead_score": lead_score.total,
            "lead_priority": lead_score.priority,
            "original_message": lead.message,
            "signup_date": lead.received_at.isoformat() if lead.received_at else None,
            "user_agent": lead.user_agent,
            "referrer": lead.referrer,
            "service_interest": lead.service,
            "source_breakdown": json.dumps(lead_score.to_dict()["breakdown"]),
        },
    }

def route(state: LeadState) -> LeadState:
    """Pick the follow-up workflow and prepare the CRM contact."""
    logger.info(f"Starting routing for lead: {state.get('lead_id', 'unknown')}")

    lead = state["submission"]
    lead_score = state["lead_score"]

    try:
        routes = load_routing_rules()
        state["workflow_id"] = workflow_for(lead.source, lead_score.priority, routes)
    except Exception as e:
        error_msg = f"Routing failed: {str(e)}"
        logger.error(error_msg)
        state.setdefault("errors", []).append(error_msg)
        state["workflow_id"] = None

    state["crm_contact"] = format_crm_contact(lead, lead_score)

    if state["workflow_id"]:
        state["route_reason"] = f"Matched {lead.source}/{lead_score.priority} → {state['workflow_id']}"
    else:
        state["route_reason"] = f"No follow-up workflow for {lead.source}/{lead_score.priority}"

    logger.info(f"Routing completed for {state.get('lead_id')}: {state['route_reason']}")
    return state
