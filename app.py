import os
import time
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from langgraph.graph import StateGraph, START, END
from loguru import logger
from pydantic import BaseModel, Field

# Import our modules
from graph.state import LeadState
from graph.nodes.capture import capture
from graph.nodes.score import score
from graph.nodes.route import route
from tools.analytics import AnalyticsEvent, LoggingSink
from tools.store import RedisStore
from tracking.models import SessionHistoryRecord, StorageKeys
from tracking.recorder import append_session_history, load_session_history

# Load environment variables
load_dotenv()

# Configure logging
logger.add("logs/app.log", rotation="1 day", retention="7 days", level="INFO")

GENERIC_ERROR = "An error occurred while processing your request. Please try again."
SUCCESS_MESSAGE = "Thank you! Your information has been submitted successfully."
SESSION_HISTORY_LIMIT = int(os.getenv("SESSION_HISTORY_LIMIT", "10"))

# Initialize FastAPI app
app = FastAPI(
    title="Lead Funnel Scoring & Insights",
    description="Lead scoring for site form submissions and behavioral session history",
    version="1.0.0"
)

# Build the LangGraph workflow
def build_workflow():
    """Build the lead intake workflow: capture -> score -> route."""
    workflow = StateGraph(LeadState)

    # Add nodes
    workflow.add_node("capture", capture)
    workflow.add_node("score", score)
    workflow.add_node("route", route)

    workflow.add_edge(START, "capture")

    # Rejected submissions stop after capture
    def after_capture(state: LeadState) -> str:
        if state.get("submission") is None:
            logger.info(f"Lead not scored: {state.get('errors')}")
            return "end"
        return "score"

    workflow.add_conditional_edges("capture", after_capture, {"score": "score", "end": END})
    workflow.add_edge("score", "route")
    workflow.add_edge("route", END)

    return workflow.compile()

# Initialize workflow, storage and analytics
app_graph = build_workflow()
store = RedisStore()
storage_keys = StorageKeys.with_prefix()
analytics = LoggingSink()


class SessionHistoryIn(BaseModel):
    session_id: str = Field(alias="sessionId")
    timestamp: int
    event_count: int = Field(0, alias="eventCount", ge=0)
    heatmap_count: int = Field(0, alias="heatmapCount", ge=0)
    duration: int = Field(0, ge=0)

    model_config = {"populate_by_name": True}


async def read_payload(req: Request) -> Dict[str, Any]:
    """Form submissions arrive either as JSON or as form fields."""
    content_type = req.headers.get("content-type", "")
    if "application/json" in content_type:
        return await req.json()
    form = await req.form()
    return dict(form)


def run_intake(payload: Dict[str, Any], req: Request) -> LeadState:
    initial_state = {
        "raw": payload,
        "headers": {
            "user-agent": req.headers.get("user-agent", ""),
            "referer": req.headers.get("referer", ""),
        },
        "errors": [],
    }
    return app_graph.invoke(initial_state)


def validation_error(result: LeadState) -> Optional[str]:
    for error in result.get("errors", []):
        if error.startswith("validation: "):
            return error[len("validation: "):]
    return None


@app.post("/api/lead-capture")
async def lead_capture(req: Request):
    """
    Lead capture endpoint for the site's forms.

    Expected payload (JSON or form-encoded):
    {
        "email": "jane@acme.com",
        "name": "Jane Doe",
        "company": "Acme",
        "website": "acme.com",
        "service": "growth",
        "message": "We need a new site before our launch",
        "source": "hero_demo"
    }
    """
    start_time = time.time()

    try:
        payload = await read_payload(req)
        logger.info(f"Received lead submission: {payload.get('email', 'unknown')}")

        result = run_intake(payload, req)

        error = validation_error(result)
        if error:
            return JSONResponse(status_code=400, content={"success": False, "error": error})

        lead = result["submission"]
        lead_score = result["lead_score"]

        analytics.track(AnalyticsEvent(
            name="lead_capture",
            parameters={
                "lead_source": lead.source,
                "lead_score": lead_score.total,
                "lead_priority": lead_score.priority,
            },
            value=lead_score.total,
        ))

        processing_time = time.time() - start_time
        logger.info(f"Lead processing completed in {processing_time:.2f}s: {result.get('lead_id', 'unknown')}")

        return JSONResponse(
            status_code=200,
            content={
                "success": True,
                "leadScore": lead_score.total,
                "priority": lead_score.priority,
                "message": SUCCESS_MESSAGE,
            }
        )

    except Exception as e:
        logger.error(f"Lead capture error: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": GENERIC_ERROR})


@app.post("/api/lead-score")
async def lead_score_preview(req: Request):
    """Score a lead without recording a capture; returns the full breakdown and tags."""
    try:
        payload = await read_payload(req)
        result = run_intake(payload, req)

        error = validation_error(result)
        if error:
            return JSONResponse(status_code=400, content={"success": False, "error": error})

        return {
            "success": True,
            "score": result["lead_score"].to_dict(),
            "workflowId": result.get("workflow_id"),
            "routeReason": result.get("route_reason"),
            "crmTags": result.get("crm_contact", {}).get("tags", []),
        }

    except Exception as e:
        logger.error(f"Lead scoring error: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": GENERIC_ERROR})


@app.post("/api/sessions")
def record_session(body: SessionHistoryIn):
    """Append a finished session's summary to the recent-session history."""
    record = SessionHistoryRecord(
        session_id=body.session_id,
        timestamp=body.timestamp,
        event_count=body.event_count,
        heatmap_count=body.heatmap_count,
        duration=body.duration,
    )
    history = append_session_history(store, storage_keys.sessions, record, limit=SESSION_HISTORY_LIMIT)
    logger.info(f"Session {record.session_id} recorded ({len(history)} in history)")
    return {"success": True, "sessions": len(history)}


@app.get("/api/sessions")
def recent_sessions():
    """Most recent session summaries, oldest first."""
    return {"sessions": load_session_history(store, storage_keys.sessions)}


@app.get("/health")
def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": "1.0.0",
        "services": {
            "redis": "connected" if store.r else "disconnected",
            "workflow": "ready"
        }
    }

# Error handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn

    # Create logs directory if it doesn't exist
    os.makedirs("logs", exist_ok=True)

    logger.info("Starting Lead Funnel Scoring & Insights")

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
