from __future__ import annotations

from decimal import Decimal

from growthcrm.automation.engine import CascadeRule, all_of, field_at_least, field_equals, field_in
from growthcrm.automation.stores import Record
from growthcrm.core.config import Settings, get_settings


PODCAST_TO_DISCOVERY = "podcast_to_discovery"
DISCOVERY_TO_SALES = "discovery_to_sales"

# AI interview scores are out of 50
PODCAST_SCORE_SCALE = 50


def _discovery_from_interview(interview: Record) -> Record:
    analysis = interview.get("ai_analysis") or ""
    return {
        "contact_name": interview.get("guest_name"),
        "company": interview.get("company"),
        "email": interview.get("guest_email"),
        "call_status": "scheduled",
        "call_source": "podcast_qualified",
        "notes": (
            "Auto-created from podcast interview. "
            f"AI Score: {interview.get('overall_score')}/{PODCAST_SCORE_SCALE}. {analysis}"
        ),
    }


def _sales_from_discovery(call: Record) -> Record:
    return {
        "prospect_name": call.get("contact_name"),
        "company": call.get("company"),
        "email": call.get("email"),
        "call_status": "scheduled",
        "deal_value": Decimal("0"),
        "notes": f"Auto-created from discovery call. {call.get('notes') or ''}",
    }


def podcast_to_discovery(threshold: int) -> CascadeRule:
    return CascadeRule(
        name=PODCAST_TO_DISCOVERY,
        source_type="podcast_interview",
        target_type="discovery_call",
        trigger=all_of(
            field_equals("qualified_for_discovery", True),
            field_at_least("overall_score", threshold),
        ),
        build_target=_discovery_from_interview,
    )


def discovery_to_sales() -> CascadeRule:
    return CascadeRule(
        name=DISCOVERY_TO_SALES,
        source_type="discovery_call",
        target_type="sales_call",
        trigger=field_in("call_status", {"completed", "qualified"}),
        build_target=_sales_from_discovery,
    )


def build_default_rules(settings: Settings | None = None) -> dict[str, CascadeRule]:
    resolved = settings or get_settings()
    rules = (
        podcast_to_discovery(resolved.podcast_qualification_threshold),
        discovery_to_sales(),
    )
    return {rule.name: rule for rule in rules}


def rules_for_source(source_type: str, settings: Settings | None = None) -> list[CascadeRule]:
    return [rule for rule in build_default_rules(settings).values() if rule.source_type == source_type]
