import itertools
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from graph.nodes.capture import LeadSubmission
from graph.nodes.score import (
    calculate_lead_score,
    completeness_score,
    infer_industry,
    intent_signals,
    priority_for,
)

class TestCalculateLeadScore:
    """Rule-based lead scoring."""

    def test_worked_example_clamps_to_100(self):
        lead = LeadSubmission(
            source="hero_demo",
            email="a@b.com",
            company="Acme",
            website="acme.com",
            message="We need this urgently, what is the budget?",
        )
        result = calculate_lead_score(lead)

        assert result.breakdown.source == 85
        # company + website + message longer than 20 characters
        assert result.breakdown.completeness == 35
        assert result.breakdown.intent == 35
        assert result.breakdown.engagement == 0
        assert result.total == 100
        assert result.priority == "urgent"
        assert result.tags == (
            "source_hero_demo",
            "urgent_timeline",
            "budget_discussion",
            "website_provided",
            "priority_urgent",
        )

    def test_everything_at_once_clamps_to_exactly_100(self):
        lead = LeadSubmission(
            source="hero_demo",
            email="ops@acme.com",
            first_name="Ada",
            last_name="Lovelace",
            company="Acme",
            website="acme.com",
            phone="+1 555 0100",
            service="enterprise",
            message="Urgent: budget approved, launch next month, we are struggling with leads",
        )
        result = calculate_lead_score(lead)

        assert result.breakdown.completeness == 55
        assert result.breakdown.intent == 55
        assert result.total == 100
        assert result.priority == "urgent"

    def test_unknown_source_scores_zero_but_is_tagged(self):
        result = calculate_lead_score(LeadSubmission(email="a@b.com", source="podcast"))

        assert result.breakdown.source == 0
        assert result.total == 0
        assert result.tags[0] == "source_podcast"
        assert result.priority == "low"

    def test_unknown_service_scores_zero_but_is_tagged(self):
        with_service = calculate_lead_score(LeadSubmission(email="a@b.com", source="newsletter", service="mystery"))
        without = calculate_lead_score(LeadSubmission(email="a@b.com", source="newsletter"))

        assert with_service.total == without.total == 25
        assert "service_mystery" in with_service.tags
        assert not any(tag.startswith("service_") for tag in without.tags)

    def test_service_scores_add_to_total(self):
        result = calculate_lead_score(LeadSubmission(email="a@b.com", source="newsletter", service="enterprise"))
        assert result.total == 50
        assert result.priority == "medium"

    def test_empty_message_has_no_intent(self):
        result = calculate_lead_score(LeadSubmission(email="a@b.com", source="calculator", message=""))

        assert result.breakdown.intent == 0
        assert result.total == 70
        assert not {"urgent_timeline", "budget_discussion", "timeline_defined", "pain_point_identified"} & set(result.tags)

    @pytest.mark.parametrize("lead, total, priority", [
        (LeadSubmission(email="a@b.com", source="hero_demo", company="Acme", first_name="A"), 100, "urgent"),
        (LeadSubmission(email="a@b.com", source="pricing_inquiry"), 75, "high"),
        (LeadSubmission(email="a@b.com", source="resource_download", first_name="A"), 50, "medium"),
        (LeadSubmission(email="a@b.com", source="resource_download"), 45, "low"),
    ])
    def test_priority_boundaries_through_scoring(self, lead, total, priority):
        result = calculate_lead_score(lead)
        assert result.total == total
        assert result.priority == priority
        assert result.tags[-1] == f"priority_{priority}"

    def test_priority_tag_precedes_industry_tag(self):
        result = calculate_lead_score(LeadSubmission(email="a@b.com", source="contact_form", company="City Clinic"))
        assert result.tags[-2:] == ("priority_medium", "industry_healthcare")

    def test_total_always_within_bounds(self):
        sources = ["hero_demo", "newsletter", "unknown"]
        messages = [None, "", "asap budget timeline problem", "hi"]
        services = [None, "enterprise", "other", "weird"]
        for source, message, service, website, company in itertools.product(
            sources, messages, services, [None, "x.com"], [None, "Acme"],
        ):
            lead = LeadSubmission(
                email="a@b.com", source=source, message=message,
                service=service, website=website, company=company,
            )
            result = calculate_lead_score(lead)
            assert 0 <= result.total <= 100
            assert result.priority == priority_for(result.total)
            assert len(result.tags) == len(set(result.tags))

    def test_scoring_is_deterministic(self):
        lead = LeadSubmission(email="a@b.com", source="calculator", message="what does it cost?")
        assert calculate_lead_score(lead) == calculate_lead_score(lead)

    def test_to_dict(self):
        data = calculate_lead_score(LeadSubmission(email="a@b.com", source="newsletter")).to_dict()
        assert data == {
            "total": 25,
            "breakdown": {"source": 25, "completeness": 0, "engagement": 0, "intent": 0},
            "tags": ["source_newsletter", "priority_low"],
            "priority": "low",
        }

class TestScoringRules:

    @pytest.mark.parametrize("total, priority", [
        (100, "urgent"), (99, "high"), (75, "high"), (74, "medium"),
        (50, "medium"), (49, "low"), (0, "low"),
    ])
    def test_priority_for(self, total, priority):
        assert priority_for(total) == priority

    def test_completeness_requires_detailed_message(self):
        assert completeness_score(LeadSubmission(email="a@b.com", message="x" * 20)) == 0
        assert completeness_score(LeadSubmission(email="a@b.com", message="x" * 21)) == 10

    def test_intent_sets_are_independent(self):
        points, tags = intent_signals("ASAP please, the PRICE matters and we are FRUSTRATED")
        assert points == 45
        assert tags == ["urgent_timeline", "budget_discussion", "pain_point_identified"]

    def test_intent_counts_each_set_once(self):
        points, tags = intent_signals("urgent urgent asap immediately")
        assert points == 20
        assert tags == ["urgent_timeline"]

    def test_industry_first_match_wins(self):
        # "shop" (ecommerce) and "software" (saas) both match
        assert infer_industry("a@b.com", "Shop Software Ltd") == "industry_ecommerce"
        # healthcare is checked before legal
        assert infer_industry("a@b.com", "Health Law Partners") == "industry_healthcare"
        assert infer_industry("a@b.com", "Legal Property Group") == "industry_legal"

    def test_industry_from_email_domain(self):
        assert infer_industry("owner@mystore.shopify.com", None) == "industry_ecommerce"
        assert infer_industry("team@bestsaas.io", "Acme") == "industry_saas"

    def test_industry_real_estate(self):
        assert infer_industry("a@b.com", "Sunset Realty") == "industry_realestate"
        assert infer_industry("a@b.com", "Real Estate Partners") == "industry_realestate"

    def test_no_industry(self):
        assert infer_industry("a@b.com", "Acme") is None
        assert infer_industry("not-an-email", None) is None
        assert len([t for t in calculate_lead_score(
            LeadSubmission(email="a@b.com", company="Shop Software Clinic")
        ).tags if t.startswith("industry_")]) == 1
