"""
Shared data model for the strategy builder pipeline.

Rules are the accumulated facts of one conversation. ExtractedComponents is
the fixed-shape output of an extraction pass. Everything else is derived.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

RuleCategory = Literal["setup", "entry", "exit", "risk", "timeframe", "filters"]
RuleSource = Literal["user", "assistant", "default"]
PatternType = Literal["opening_range_breakout", "ema_pullback", "breakout"]
Direction = Literal["long", "short", "both"]
CriticalField = Literal["stopLoss", "instrument"]
QuestionType = Literal[
    "stopLoss",
    "instrument",
    "entryTrigger",
    "direction",
    "profitTarget",
    "positionSizing",
    "pattern",
]

SUPPORTED_PATTERNS = ("opening_range_breakout", "ema_pullback", "breakout")

PATTERN_DISPLAY_NAMES = {
    "opening_range_breakout": "Opening Range Breakout",
    "ema_pullback": "EMA Pullback",
    "breakout": "Breakout",
}


class Rule(BaseModel):
    """One accumulated strategy fact, e.g. exit / Stop Loss / "20 ticks"."""

    model_config = ConfigDict(populate_by_name=True)

    category: RuleCategory
    label: str
    value: str
    is_defaulted: bool = Field(default=False, alias="isDefaulted")
    source: RuleSource = "user"
    explanation: Optional[str] = None


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ExtractedComponents(BaseModel):
    """
    One nullable slot per supported field. None means the field was never
    stated in the conversation, not that it has an unknown default.
    """

    model_config = ConfigDict(populate_by_name=True)

    instrument: Optional[str] = None
    pattern: Optional[PatternType] = None
    stop_loss: Optional[str] = Field(default=None, alias="stopLoss")
    direction: Optional[Direction] = None
    profit_target: Optional[str] = Field(default=None, alias="profitTarget")
    position_sizing: Optional[str] = Field(default=None, alias="positionSizing")
    session: Optional[str] = None
    entry_trigger: Optional[str] = Field(default=None, alias="entryTrigger")

    @field_validator(
        "instrument",
        "stop_loss",
        "profit_target",
        "position_sizing",
        "session",
        "entry_trigger",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, str):
            return value.strip()
        return value


class ExtractionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    components: ExtractedComponents = Field(default_factory=ExtractedComponents)
    missing_critical: List[CriticalField] = Field(default_factory=list, alias="missingCritical")
    is_complete: bool = Field(default=False, alias="isComplete")
    failure_reason: Optional[str] = Field(default=None, alias="failureReason")


class AnswerOption(BaseModel):
    value: str
    label: str
    default: Optional[bool] = None


class CriticalQuestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str
    question_type: QuestionType = Field(alias="questionType")
    options: List[AnswerOption]


# ─── Canonical strategy ────────────────────────────────────────────


class InstrumentSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    symbol: str
    full_name: str = Field(alias="fullName")
    tick_size: float = Field(alias="tickSize")
    tick_value: float = Field(alias="tickValue")
    point_value: float = Field(alias="pointValue")


class StopLossConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["structure", "percentage", "atr_multiple", "fixed_distance", "opposite_side"]
    value: float
    unit: Optional[Literal["percentage", "ticks", "points", "atr", "dollars"]] = None
    relative_to: Literal["entry", "range_low", "range_high", "swing_point"] = Field(
        default="entry", alias="relativeTo"
    )
    matched: bool = True
    committed: bool = True


class TakeProfitConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["r_multiple", "percentage", "fixed_distance", "structure", "extension"]
    value: float
    unit: Optional[Literal["r", "percentage", "ticks", "points", "dollars"]] = None
    relative_to: Literal["entry", "stop_distance", "range_size"] = Field(
        default="entry", alias="relativeTo"
    )
    matched: bool = True


class TypedField(BaseModel):
    """Result of canonicalizing one rule: which field it fills and the typed value."""

    field: Literal["stop_loss", "take_profit"]
    source_text: str
    config: Union[StopLossConfig, TakeProfitConfig]


class RiskConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    position_sizing: Literal["risk_percent", "fixed_contracts"] = Field(alias="positionSizing")
    risk_percent: Optional[float] = Field(default=None, alias="riskPercent")
    max_contracts: int = Field(alias="maxContracts")


class TimeConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session: Literal["ny", "london", "asia", "all", "custom"]
    timezone: str = "America/New_York"
    custom_start: Optional[str] = Field(default=None, alias="customStart")
    custom_end: Optional[str] = Field(default=None, alias="customEnd")


class ExitConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stop_loss: Optional[StopLossConfig] = Field(default=None, alias="stopLoss")
    take_profit: TakeProfitConfig = Field(alias="takeProfit")


class CanonicalStrategy(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pattern: PatternType
    direction: Direction
    instrument: Optional[InstrumentSpec] = None
    entry: Dict[str, Any]
    exit: ExitConfig
    risk: RiskConfig
    time: TimeConfig


class CanonicalizationResult(BaseModel):
    success: bool
    canonical: Optional[CanonicalStrategy] = None
    errors: List[Dict[str, str]] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


# ─── Visual derivation ─────────────────────────────────────────────


class EntryParameters(BaseModel):
    trigger: Literal[
        "breakout_above", "breakout_below", "pullback_to", "bounce_off", "cross_above", "cross_below"
    ] = "breakout_above"
    level: Optional[Literal["range_high", "range_low", "ema", "vwap", "structure"]] = None
    confirmation_required: bool = False


class StrategyParameters(BaseModel):
    strategy_type: str = "breakout"
    entry: EntryParameters = Field(default_factory=EntryParameters)
    stop_loss: StopLossConfig
    profit_target: TakeProfitConfig
    direction: Literal["long", "short"] = "long"
    range_period: Optional[int] = None


class VisualCoordinates(BaseModel):
    entry: float
    stop: float
    target: float
    range_low: float
    range_high: float
    entry_label: str
    stop_label: str
    target_label: str
    risk_distance: float
    reward_distance: float
    risk_reward_ratio: str
