"""
FILE: rebalancer/core/models.py
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

LAYERS = (1, 2, 3, 4, 5)
ONE_TIME_PRIORITY_LAYERS = (1, 2, 3, 4)

DEFAULT_TARGET_WEIGHTS = {
    1: Decimal("0.70"),
    2: Decimal("0.20"),
    3: Decimal("0.08"),
    4: Decimal("0.02"),
    5: Decimal("0.00"),
}
DEFAULT_ACCEPTABLE_VARIANCE_PCT = Decimal("3.0")
DEFAULT_MINIMUM_SAVING_PLAN_SIZE = Decimal("15")
DEFAULT_MINIMUM_REBALANCING_AMOUNT = Decimal("10")
DEFAULT_MINIMUM_INSTRUMENT_AMOUNT = Decimal("25")
DEFAULT_MAX_PLANS_PER_LAYER = 17

SavingPlanSuggestionType = Literal["create", "increase", "decrease", "discard"]
SuggestionAction = Literal["new", "increase"]
InstrumentReasonCode = Literal[
    "NO_CHANGE_WITHIN_TOLERANCE",
    "MIN_AMOUNT_DROPPED",
    "MIN_REBALANCE_AMOUNT",
    "KB_WEIGHTED",
    "EQUAL_WEIGHT",
    "LAYER_BUDGET_ZERO",
]


class GapDetectionPolicy(str, Enum):
    SAVING_PLAN_GAPS = "SAVING_PLAN_GAPS"
    PORTFOLIO_GAPS = "PORTFOLIO_GAPS"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "GapDetectionPolicy":
        normalized = (raw or "").strip().upper().replace("-", "_").replace(" ", "_")
        if normalized in {"PORTFOLIO_GAPS", "PORTFOLIO", "HOLDINGS", "ALL_HOLDINGS"}:
            return cls.PORTFOLIO_GAPS
        return cls.SAVING_PLAN_GAPS


def normalize_isin(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip().upper()
    return cleaned or None


def _non_negative_or_default(value: Decimal, default: Decimal) -> Decimal:
    return default if value < Decimal("0") else value


class RecurringPlan(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "isin": "IE00B4L5Y983",
                "account_id": "depot_1",
                "amount": "150.00",
                "layer": 1,
            }
        }
    }

    isin: str = Field(description="Instrument ISIN.", examples=["IE00B4L5Y983"])
    account_id: Optional[str] = Field(
        default=None,
        description="Account (depot) holding the plan; part of the plan identity.",
        examples=["depot_1"],
    )
    amount: Decimal = Field(
        ge=0,
        description="Current periodic contribution amount.",
        examples=["150.00"],
    )
    layer: int = Field(ge=1, le=5, description="Assigned risk layer.", examples=[1])
    name: Optional[str] = Field(default=None, description="Instrument display name.")
    last_changed: Optional[date] = Field(
        default=None,
        description="Date the plan amount was last changed.",
        examples=["2025-01-31"],
    )

    @field_validator("isin")
    @classmethod
    def validate_isin(cls, v: str) -> str:
        normalized = normalize_isin(v)
        if normalized is None:
            raise ValueError("isin must not be blank")
        return normalized

    @property
    def plan_key(self) -> str:
        if self.account_id:
            return f"{self.isin}@{self.account_id}"
        return self.isin


class LayerTargetConfig(BaseModel):
    """
    Layer targets and thresholds for one advisory run.

    Out-of-range values are clamped rather than rejected so advisory output stays available.
    """

    target_weights: Dict[int, Decimal] = Field(
        default_factory=lambda: dict(DEFAULT_TARGET_WEIGHTS),
        description="Target weight per layer (1..5), as fractions.",
        examples=[{"1": "0.70", "2": "0.20", "3": "0.08", "4": "0.02", "5": "0"}],
    )
    acceptable_variance_pct: Decimal = Field(
        default=DEFAULT_ACCEPTABLE_VARIANCE_PCT,
        description="Tolerance band per layer in percentage points of the total.",
        examples=["3.0"],
    )
    minimum_saving_plan_size: Decimal = Field(
        default=DEFAULT_MINIMUM_SAVING_PLAN_SIZE,
        description="Smallest allowed non-zero recurring plan amount.",
        examples=["15"],
    )
    minimum_rebalancing_amount: Decimal = Field(
        default=DEFAULT_MINIMUM_REBALANCING_AMOUNT,
        description="Smallest change worth proposing.",
        examples=["10"],
    )
    minimum_instrument_amount: Decimal = Field(
        default=DEFAULT_MINIMUM_INSTRUMENT_AMOUNT,
        description="Smallest one-time amount per instrument.",
        examples=["25"],
    )
    max_plans_per_layer: Dict[int, int] = Field(
        default_factory=lambda: {layer: DEFAULT_MAX_PLANS_PER_LAYER for layer in LAYERS},
        description="Maximum number of recurring plans per layer.",
        examples=[{"1": 17, "2": 17, "3": 17, "4": 17, "5": 17}],
    )
    currency: str = Field(default="EUR", description="Run currency.", examples=["EUR"])

    @field_validator("target_weights")
    @classmethod
    def clamp_target_weights(cls, v: Dict[int, Decimal]) -> Dict[int, Decimal]:
        return {
            layer: max(weight, Decimal("0")) for layer, weight in v.items() if layer in LAYERS
        }

    @field_validator("acceptable_variance_pct")
    @classmethod
    def clamp_variance(cls, v: Decimal) -> Decimal:
        return _non_negative_or_default(v, DEFAULT_ACCEPTABLE_VARIANCE_PCT)

    @field_validator(
        "minimum_saving_plan_size", "minimum_rebalancing_amount", "minimum_instrument_amount"
    )
    @classmethod
    def clamp_minimums(cls, v: Decimal) -> Decimal:
        return _non_negative_or_default(v, Decimal("0"))

    @field_validator("max_plans_per_layer")
    @classmethod
    def clamp_max_plans(cls, v: Dict[int, int]) -> Dict[int, int]:
        clamped = {layer: DEFAULT_MAX_PLANS_PER_LAYER for layer in LAYERS}
        for layer, value in v.items():
            if layer in LAYERS:
                clamped[layer] = max(value, 0)
        return clamped

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper() or "EUR"


class LayerDeltaDiagnostics(BaseModel):
    within_tolerance: bool = Field(
        description="Whether every layer is inside the acceptable variance band.",
        examples=[True],
    )
    suppressed_deltas_count: int = Field(
        default=0,
        description="Number of layer deltas suppressed below the minimum rebalancing amount.",
        examples=[2],
    )
    suppressed_amount_total: Decimal = Field(
        default=Decimal("0"),
        description="Sum of absolute suppressed layer deltas.",
        examples=["10.00"],
    )
    notes: List[str] = Field(
        default_factory=list,
        description="Human-readable redistribution notes in the order they were applied.",
    )


class LayerDeltaResult(BaseModel):
    current_amounts: Dict[int, Decimal] = Field(description="Current amount per layer.")
    target_amounts: Dict[int, Decimal] = Field(description="Rounded target amount per layer.")
    raw_deltas: Dict[int, Decimal] = Field(description="Target minus current per layer.")
    deltas: Dict[int, Decimal] = Field(description="Adjusted per-layer deltas.")
    net_change: Decimal = Field(description="Requested net change; the deltas sum to it.")
    diagnostics: LayerDeltaDiagnostics


class LayerProposal(BaseModel):
    layer: int = Field(ge=1, le=5, examples=[1])
    current_amount: Decimal = Field(description="Current layer amount.", examples=["50"])
    target_amount: Decimal = Field(description="Proposed layer amount.", examples=["55"])
    delta: Decimal = Field(description="Proposed minus current.", examples=["5"])
    notes: List[str] = Field(default_factory=list)


class LayerMinimumAdjustment(BaseModel):
    adjusted_amounts: Dict[int, Decimal]
    zeroed_layers: List[int] = Field(default_factory=list)
    rebalanced: bool = False
    raised_layer_one: bool = False


class PlanAllocation(BaseModel):
    deltas: Dict[str, Decimal] = Field(
        default_factory=dict, description="Signed change per plan key."
    )
    proposed_amounts: Dict[str, Decimal] = Field(
        default_factory=dict, description="Resulting amount per plan key."
    )
    discarded_plans: List[str] = Field(
        default_factory=list,
        description="Plan keys set to zero, sorted.",
        examples=[["IE00B4L5Y983@depot_1"]],
    )
    minimum_rebalance_relaxed: bool = Field(
        default=False,
        description="True when per-plan changes below the minimum rebalancing amount were allowed.",
    )
    notes: List[str] = Field(default_factory=list)


class SavingPlanSuggestion(BaseModel):
    type: SavingPlanSuggestionType = Field(examples=["increase"])
    isin: str = Field(examples=["IE00B4L5Y983"])
    account_id: Optional[str] = Field(default=None, examples=["depot_1"])
    old_amount: Decimal = Field(examples=["50"])
    new_amount: Decimal = Field(examples=["60"])
    delta: Decimal = Field(examples=["10"])
    rationale: str = Field(examples=["Increase to align with target layer allocation."])


class OneTimeAllocation(BaseModel):
    layer_buckets: Dict[int, Decimal] = Field(
        default_factory=dict, description="One-time amount per priority layer."
    )
    instrument_buckets: Optional[Dict[str, Decimal]] = Field(
        default=None,
        description="One-time amount per ISIN when instrument allocation is enabled.",
    )
    notes: List[str] = Field(default_factory=list)


class ValuationSnapshot(BaseModel):
    pe_current: Optional[Decimal] = Field(default=None, examples=["18.5"])
    pe_longterm: Optional[Decimal] = Field(default=None, examples=["21.0"])
    earnings_yield_longterm: Optional[Decimal] = Field(default=None, examples=["0.048"])
    pe_ttm_holdings: Optional[Decimal] = Field(default=None, examples=["19.2"])
    earnings_yield_ttm_holdings: Optional[Decimal] = Field(default=None, examples=["0.052"])
    ev_to_ebitda: Optional[Decimal] = Field(default=None, examples=["11.4"])
    price_to_book: Optional[Decimal] = Field(default=None, examples=["2.8"])
    dividend_yield: Optional[Decimal] = Field(default=None, examples=["0.018"])
    pe_method: Optional[str] = Field(default=None, examples=["ttm"])
    pe_horizon: Optional[str] = Field(default=None, examples=["normalized"])
    neg_earnings_handling: Optional[str] = Field(default=None, examples=["exclude"])


class ExtractionRecord(BaseModel):
    """Read-only knowledge-base snapshot of one instrument."""

    isin: str = Field(examples=["IE00B4L5Y983"])
    status: str = Field(default="COMPLETE", examples=["COMPLETE"])
    name: Optional[str] = Field(default=None, examples=["iShares Core MSCI World UCITS ETF Acc"])
    layer: Optional[int] = Field(default=None, ge=1, le=5, examples=[1])
    instrument_type: Optional[str] = Field(default=None, examples=["ETF"])
    asset_class: Optional[str] = Field(default=None, examples=["Equity"])
    sub_class: Optional[str] = Field(default=None, examples=["Global equity"])
    layer_notes: Optional[str] = Field(default=None)
    benchmark_index: Optional[str] = Field(default=None, examples=["MSCI World"])
    ongoing_charges_pct: Optional[Decimal] = Field(default=None, ge=0, examples=["0.20"])
    regions: Dict[str, Decimal] = Field(
        default_factory=dict, description="Region name to exposure weight."
    )
    top_holdings: Dict[str, Decimal] = Field(
        default_factory=dict, description="Top holding name to weight."
    )
    sectors: Dict[str, Decimal] = Field(
        default_factory=dict, description="Sector name to exposure weight."
    )
    valuation: Optional[ValuationSnapshot] = None
    missing_fields: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @field_validator("isin")
    @classmethod
    def validate_isin(cls, v: str) -> str:
        normalized = normalize_isin(v)
        if normalized is None:
            raise ValueError("isin must not be blank")
        return normalized


class InstrumentInput(BaseModel):
    isin: str = Field(examples=["IE00B4L5Y983"])
    name: Optional[str] = Field(default=None)
    amount: Decimal = Field(ge=0, description="Current periodic amount.", examples=["30"])
    layer: int = Field(ge=1, le=5, examples=[1])
    last_changed: Optional[date] = None

    @field_validator("isin")
    @classmethod
    def validate_isin(cls, v: str) -> str:
        normalized = normalize_isin(v)
        if normalized is None:
            raise ValueError("isin must not be blank")
        return normalized


class InstrumentProposal(BaseModel):
    isin: str
    name: Optional[str] = None
    current_amount: Decimal
    proposed_amount: Decimal
    delta: Decimal
    layer: int
    reason_codes: List[InstrumentReasonCode] = Field(default_factory=list)


class GatingResult(BaseModel):
    enabled: bool = Field(default=True, description="Whether the knowledge base is enabled.")
    complete: bool = Field(description="Whether every in-scope ISIN has complete data.")
    missing_isins: List[str] = Field(
        default_factory=list, description="ISINs without complete data, sorted."
    )


class InstrumentWarning(BaseModel):
    code: str = Field(examples=["LAYER_NO_INSTRUMENTS"])
    message: str
    layer: int


class LayerWeightingSummary(BaseModel):
    layer: int
    instrument_count: int
    weighted: bool = Field(description="False when every instrument got an equal weight.")
    cost_used: bool = False
    benchmark_used: bool = False
    regions_used: bool = False
    holdings_used: bool = False
    sectors_used: bool = False
    valuation_used: bool = False
    data_quality_used: bool = False
    weights: Dict[str, Decimal] = Field(default_factory=dict)


class InstrumentProposalResult(BaseModel):
    gating: GatingResult
    proposals: List[InstrumentProposal] = Field(default_factory=list)
    warnings: List[InstrumentWarning] = Field(default_factory=list)
    weighting_summaries: List[LayerWeightingSummary] = Field(default_factory=list)


class SuggestionItem(BaseModel):
    isin: str = Field(examples=["IE00BK5BQT80"])
    name: Optional[str] = None
    layer: int = Field(ge=1, le=5)
    amount: Decimal = Field(examples=["25"])
    action: SuggestionAction = Field(examples=["new"])
    rationale: str


class SuggestionResult(BaseModel):
    saving_plan_suggestions: List[SuggestionItem] = Field(default_factory=list)
    one_time_suggestions: List[SuggestionItem] = Field(default_factory=list)


class AssessmentRequest(BaseModel):
    plans: List[RecurringPlan] = Field(default_factory=list)
    config: LayerTargetConfig = Field(default_factory=LayerTargetConfig)
    saving_plan_delta: Optional[Decimal] = Field(
        default=None,
        description="Change to the total monthly contribution; non-zero forces allocation.",
        examples=["100"],
    )
    one_time_amount: Optional[Decimal] = Field(
        default=None, ge=0, description="Lump sum to allocate.", examples=["1000"]
    )
    holdings_by_layer: Dict[int, Decimal] = Field(
        default_factory=dict, description="Current holdings value per layer."
    )
    existing_isins: List[str] = Field(
        default_factory=list, description="ISINs held outside recurring plans."
    )
    excluded_isins: List[str] = Field(default_factory=list)
    gap_detection_policy: GapDetectionPolicy = GapDetectionPolicy.SAVING_PLAN_GAPS
    instrument_allocation_enabled: bool = False
    instrument_proposals_enabled: bool = True
    suggestions_enabled: bool = True


class AssessmentResult(BaseModel):
    current_monthly_total: Decimal
    current_layer_amounts: Dict[int, Decimal]
    target_layer_amounts: Dict[int, Decimal]
    layer_proposals: List[LayerProposal] = Field(default_factory=list)
    saving_plan_suggestions: List[SavingPlanSuggestion] = Field(default_factory=list)
    one_time_allocation: Optional[OneTimeAllocation] = None
    instrument_proposals: Optional[InstrumentProposalResult] = None
    instrument_suggestions: Optional[SuggestionResult] = None
    diagnostics: LayerDeltaDiagnostics
