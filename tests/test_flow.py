import pytest
import json
import os
import sys
from unittest.mock import patch

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from graph.nodes.capture import LeadSubmission, build_submission, capture, LeadValidationError
from graph.nodes.score import score, LeadScore
from graph.nodes.route import route, workflow_for, format_crm_contact, load_routing_rules

class TestLeadIntakeFlow:
    """Test the lead intake workflow nodes."""

    def setup_method(self):
        """Set up test fixtures."""
        self.sample_lead = {
            "email": "jane.doe@acme.com",
            "name": "Jane Doe",
            "company": "Acme Corp",
            "website": "https://acme.com",
            "service": "growth",
            "message": "Our site is losing conversions, we want to launch before Q3",
            "source": "hero_demo",
        }

        self.initial_state = {
            "raw": self.sample_lead,
            "headers": {"user-agent": "pytest", "referer": "https://example.com/pricing"},
            "errors": [],
        }

    def test_capture_node(self):
        """Test the capture node normalizes lead data correctly."""
        state = dict(self.initial_state)
        result = capture(state)

        submission = result["submission"]
        assert submission.email == "jane.doe@acme.com"
        assert submission.first_name == "Jane"
        assert submission.last_name == "Doe"
        assert submission.company == "Acme Corp"
        assert submission.source == "hero_demo"
        assert submission.user_agent == "pytest"
        assert submission.referrer == "https://example.com/pricing"
        assert result["lead_id"] == "jane.doe@acme.com"
        assert len(result["errors"]) == 0

    def test_capture_node_missing_email(self):
        """Test capture node rejects a payload without email."""
        state = {"raw": {"company": "Acme"}, "errors": []}
        result = capture(state)

        assert "submission" not in result
        assert result["errors"] == ["validation: Email is required"]

    def test_capture_node_invalid_email(self):
        state = {"raw": {"email": "not-an-email"}, "errors": []}
        result = capture(state)

        assert "submission" not in result
        assert "valid email" in result["errors"][0]

    def test_capture_defaults_source_and_uses_form_type(self):
        assert build_submission({"email": "a@b.com"}).source == "contact_form"
        assert build_submission({"email": "a@b.com", "formType": "calculator"}).source == "calculator"

    def test_capture_prefers_explicit_name_parts(self):
        submission = build_submission({
            "email": "a@b.com",
            "firstName": "Ada",
            "lastName": "Lovelace",
            "name": "Someone Else",
        })
        assert submission.first_name == "Ada"
        assert submission.last_name == "Lovelace"

    def test_capture_single_word_name(self):
        submission = build_submission({"email": "a@b.com", "name": "Cher"})
        assert submission.first_name == "Cher"
        assert submission.last_name is None

    def test_capture_answers_become_message(self):
        answers = {"traffic": "10k", "goal": "more demos"}
        submission = build_submission({"email": "a@b.com", "answers": answers})
        assert json.loads(submission.message) == answers

    def test_build_submission_raises_validation_error(self):
        with pytest.raises(LeadValidationError):
            build_submission({"email": "  "})

    def test_score_node(self):
        """Test the score node calculates lead scores correctly."""
        state = capture(dict(self.initial_state))
        result = score(state)

        lead_score = result["lead_score"]
        assert isinstance(lead_score, LeadScore)
        assert lead_score.breakdown.source == 85
        assert "pain_point_identified" in lead_score.tags
        assert "timeline_defined" in lead_score.tags
        assert "service_growth" in lead_score.tags
        assert lead_score.total == 100
        assert lead_score.priority == "urgent"

    def test_route_node(self):
        """Test the route node picks the configured workflow."""
        state = score(capture(dict(self.initial_state)))
        routes = {"hero_demo": {"urgent": "wf-demo-urgent"}}

        with patch("graph.nodes.route.load_routing_rules", return_value=routes):
            result = route(state)

        assert result["workflow_id"] == "wf-demo-urgent"
        assert "hero_demo/urgent" in result["route_reason"]
        contact = result["crm_contact"]
        assert contact["email"] == "jane.doe@acme.com"
        assert "lead_score_100" in contact["tags"]
        assert contact["tags"].count("priority_urgent") == 1
        assert json.loads(contact["customFields"]["source_breakdown"])["source"] == 85

    def test_route_node_without_workflow(self):
        state = score(capture(dict(self.initial_state)))

        with patch("graph.nodes.route.load_routing_rules", return_value={}):
            result = route(state)

        assert result["workflow_id"] is None
        assert "No follow-up workflow" in result["route_reason"]

    def test_route_node_fallback(self):
        """Test route node degrades when routing rules cannot be evaluated."""
        state = score(capture(dict(self.initial_state)))

        with patch("graph.nodes.route.load_routing_rules", side_effect=Exception("Routing error")):
            result = route(state)

        assert result["workflow_id"] is None
        assert "Routing failed" in result["errors"][0]
        assert result["crm_contact"]["email"] == "jane.doe@acme.com"

    def test_load_routing_rules_missing_file(self, tmp_path):
        with patch("graph.nodes.route.ROUTING_CONFIG_PATH", str(tmp_path / "missing.json")):
            assert load_routing_rules() == {}

    def test_load_routing_rules_invalid_json(self, tmp_path):
        path = tmp_path / "routing.json"
        path.write_text("{not json")
        with patch("graph.nodes.route.ROUTING_CONFIG_PATH", str(path)):
            assert load_routing_rules() == {}

    def test_load_routing_rules_from_file(self, tmp_path):
        path = tmp_path / "routing.json"
        path.write_text(json.dumps({"calculator": {"high": "wf-calc-high"}}))
        with patch("graph.nodes.route.ROUTING_CONFIG_PATH", str(path)):
            routes = load_routing_rules()
        assert workflow_for("calculator", "high", routes) == "wf-calc-high"
        assert workflow_for("calculator", "low", routes) is None
        assert workflow_for("newsletter", "high", routes) is None

    def test_format_crm_contact_without_timestamp(self):
        lead = LeadSubmission(email="a@b.com", source="newsletter")
        lead_score = score({"submission": lead})["lead_score"]
        contact = format_crm_contact(lead, lead_score)

        assert contact["customFields"]["signup_date"] is None
        assert contact["source"].endswith("newsletter")

class TestCompiledWorkflow:
    """Run the compiled langgraph workflow end to end."""

    def setup_method(self):
        from app import build_workflow
        self.graph = build_workflow()

    def test_complete_workflow(self):
        with patch("graph.nodes.route.load_routing_rules", return_value={"pricing_inquiry": {"high": "wf-1"}}):
            result = self.graph.invoke({
                "raw": {"email": "cto@shopify-partner.io", "source": "pricing_inquiry"},
                "headers": {},
                "errors": [],
            })

        assert result["lead_score"].total == 75
        assert result["lead_score"].priority == "high"
        assert "industry_ecommerce" in result["lead_score"].tags
        assert result["workflow_id"] == "wf-1"

    def test_workflow_stops_on_invalid_lead(self):
        result = self.graph.invoke({"raw": {"email": "nope"}, "headers": {}, "errors": []})

        assert result.get("lead_score") is None
        assert result["errors"][0].startswith("validation: ")

if __name__ == "__main__":
    # Run tests
    pytest.main([__file__, "-v"])
