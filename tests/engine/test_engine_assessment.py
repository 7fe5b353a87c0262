"""
FILE: tests/engine/test_engine_assessment.py
"""

import logging
from decimal import Decimal

import pytest

from rebalancer.core.common.guards import AllocationInputError
from rebalancer.core.engine import current_layer_amounts, run_assessment
from rebalancer.core.models import AssessmentRequest
from tests.assertions import suggestion_types
from tests.factories import CountingKnowledgeBase, dec_map, plan, record


def _balanced_plans():
    return [
        plan("AAA", "70", layer=1),
        plan("BBB", "20", layer=2),
        plan("CCC", "8", layer=3),
        plan("DDD", "2", layer=4),
    ]


def _plan_kb(plans, *, enabled=True):
    return CountingKnowledgeBase(
        [record(item.isin, layer=item.layer) for item in plans], enabled=enabled
    )


def test_current_layer_amounts_cover_every_layer():
    amounts = current_layer_amounts([plan("AAA", "10", layer=2), plan("BBB", "5", layer=2)])

    assert amounts == dec_map({1: "0", 2: "15", 3: "0", 4: "0", 5: "0"})


def test_within_tolerance_proposes_no_changes():
    plans = _balanced_plans()
    kb = _plan_kb(plans)

    result = run_assessment(AssessmentRequest(plans=plans), knowledge_base=kb)

    assert result.diagnostics.within_tolerance is True
    assert result.saving_plan_suggestions == []
    assert result.target_layer_amounts == result.current_layer_amounts
    assert all(p.delta == Decimal("0") for p in result.layer_proposals)
    assert result.layer_proposals[0].notes == [
        "Layer within acceptable variance; no change proposed."
    ]
    assert {tuple(p.reason_codes) for p in result.instrument_proposals.proposals} == {
        ("NO_CHANGE_WITHIN_TOLERANCE",)
    }
    assert kb.fetch_calls == [["AAA", "BBB", "CCC", "DDD"]]
    assert kb.catalog_calls == 1


def test_out_of_tolerance_moves_amount_between_layers():
    plans = [plan("AAA", "50", layer=1), plan("BBB", "50", layer=2)]
    kb = _plan_kb(plans)

    result = run_assessment(AssessmentRequest(plans=plans), knowledge_base=kb)

    assert result.diagnostics.within_tolerance is False
    assert result.diagnostics.suppressed_deltas_count == 2
    assert result.diagnostics.suppressed_amount_total == Decimal("10")
    proposals = {p.layer: p for p in result.layer_proposals}
    assert proposals[1].delta == Decimal("20")
    assert proposals[2].delta == Decimal("-20")
    assert proposals[3].notes == ["Delta below minimum rebalancing amount; suppressed."]
    assert suggestion_types(result.saving_plan_suggestions) == [
        ("decrease", "BBB"),
        ("increase", "AAA"),
    ]
    instruments = {p.isin: p for p in result.instrument_proposals.proposals}
    assert instruments["AAA"].proposed_amount == Decimal("70")
    assert instruments["BBB"].proposed_amount == Decimal("30")


def test_saving_plan_increase_rolls_small_layers_down():
    plans = _balanced_plans()

    result = run_assessment(
        AssessmentRequest(plans=plans, saving_plan_delta=Decimal("100")),
        knowledge_base=_plan_kb(plans),
    )

    assert result.target_layer_amounts == dec_map(
        {1: "147.78", 2: "52.22", 3: "0", 4: "0", 5: "0"}
    )
    assert suggestion_types(result.saving_plan_suggestions) == [
        ("discard", "CCC"),
        ("discard", "DDD"),
        ("increase", "AAA"),
        ("increase", "BBB"),
    ]
    assert sum(
        (s.new_amount for s in result.saving_plan_suggestions), Decimal("0")
    ) == Decimal("200")
    assert "Layer 4 target below minimum saving plan size; moved to layer 3." in (
        result.diagnostics.notes
    )
    layer_three = next(p for p in result.layer_proposals if p.layer == 3)
    assert layer_three.target_amount == Decimal("0")
    assert layer_three.notes[-1] == "Target below minimum saving plan size; moved to layer 2."


def test_saving_plan_decrease_inside_band_is_still_allocated():
    plans = _balanced_plans()

    result = run_assessment(
        AssessmentRequest(plans=plans, saving_plan_delta=Decimal("-1")),
        knowledge_base=_plan_kb(plans),
    )

    assert result.diagnostics.within_tolerance is True
    assert result.target_layer_amounts == dec_map({1: "69", 2: "30", 3: "0", 4: "0", 5: "0"})
    layer_one = next(p for p in result.layer_proposals if p.layer == 1)
    assert layer_one.delta == Decimal("-1")
    assert suggestion_types(result.saving_plan_suggestions) == [
        ("discard", "CCC"),
        ("discard", "DDD"),
        ("increase", "BBB"),
    ]

def test_one_time_amount_is_split_by_layer_priority():
    plans = _balanced_plans()

    result = run_assessment(
        AssessmentRequest(plans=plans, one_time_amount=Decimal("1000")),
        knowledge_base=_plan_kb(plans),
    )

    assert result.one_time_allocation.layer_buckets == dec_map(
        {1: "700", 2: "200", 3: "100", 4: "0"}
    )
    assert result.one_time_allocation.instrument_buckets is None


def test_disabled_knowledge_base_withholds_instrument_output():
    plans = [plan("AAA", "50", layer=1), plan("BBB", "50", layer=2)]
    kb = _plan_kb(plans, enabled=False)

    result = run_assessment(AssessmentRequest(plans=plans), knowledge_base=kb)

    assert result.instrument_proposals.gating.enabled is False
    assert result.instrument_proposals.proposals == []
    assert result.instrument_suggestions is None
    assert kb.catalog_calls == 0
    assert len(result.saving_plan_suggestions) == 2


def test_suggestions_fill_gap_in_growing_layer():
    plans = [plan("IE_WORLD", "50", layer=1), plan("IE_BOND", "50", layer=2)]
    kb = CountingKnowledgeBase(
        [
            record("IE_WORLD", layer=1, sub_class="Global equity"),
            record("IE_BOND", layer=2, sub_class="Government bonds"),
            record("IE_EM", layer=1, sub_class="Emerging markets equity"),
        ]
    )

    result = run_assessment(AssessmentRequest(plans=plans), knowledge_base=kb)

    suggestions = result.instrument_suggestions.saving_plan_suggestions
    assert [(item.isin, item.layer, item.amount) for item in suggestions] == [
        ("IE_EM", 1, Decimal("20"))
    ]


def test_optional_outputs_can_be_switched_off():
    plans = [plan("AAA", "50", layer=1), plan("BBB", "50", layer=2)]
    kb = _plan_kb(plans)

    result = run_assessment(
        AssessmentRequest(
            plans=plans, instrument_proposals_enabled=False, suggestions_enabled=False
        ),
        knowledge_base=kb,
    )

    assert result.instrument_proposals is None
    assert result.instrument_suggestions is None
    assert kb.fetch_calls == []
    assert kb.catalog_calls == 0


def test_negative_delta_larger_than_total_fails():
    with pytest.raises(AllocationInputError):
        run_assessment(
            AssessmentRequest(plans=[plan("AAA", "50")], saving_plan_delta=Decimal("-60")),
            knowledge_base=CountingKnowledgeBase(),
        )


def test_assessment_logs_start_and_end(caplog):
    plans = _balanced_plans()

    with caplog.at_level(logging.INFO, logger="rebalancer.core.engine"):
        run_assessment(AssessmentRequest(plans=plans), knowledge_base=_plan_kb(plans))

    messages = [r.getMessage() for r in caplog.records if r.name == "rebalancer.core.engine"]
    assert messages[0].startswith("Running assessment. plans=4 total=100")
    assert messages[-1].startswith("Assessment complete. allocate=False")
