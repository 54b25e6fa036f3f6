EXTRACTION_TOOL_NAME = "extract_strategy_components"

EXTRACTION_SYSTEM_PROMPT = """
You read a conversation between a futures trader and an assistant and report
the strategy components the trader has stated so far.

Rules:
- Carry earlier turns forward. If the instrument was named in the first
  message and the latest message only says "20 ticks", report both.
- Quote the trader's own wording for free-text values. Do not rephrase,
  convert units or infer intent.
- Use null only for a component never mentioned anywhere in the conversation.
- Never fill in defaults. A value the trader did not state is null.

Examples:

Turn 1: "ES opening range breakout"
Turn 2: "20 ticks"
-> instrument "ES", pattern "opening_range_breakout", stopLoss "20 ticks"

Turn 1: "I trade pullbacks to the 20 EMA on NQ"
Turn 2: "Below the swing low"
-> instrument "NQ", pattern "ema_pullback", entryTrigger "pullback to 20 EMA",
   stopLoss "Below the swing low"

Pattern vocabulary:
- "opening range", "ORB", "range breakout" -> "opening_range_breakout"
- "pullback", "EMA pullback", "retracement" -> "ema_pullback"
- "breakout", "break above/below" -> "breakout"
- anything else -> null

Always answer by calling the extract_strategy_components tool.
"""

EXTRACTION_REQUEST = "Extract the strategy components from our conversation so far."


def _nullable_string(description: str) -> dict:
    return {"type": ["string", "null"], "description": description}


EXTRACT_STRATEGY_TOOL = {
    "name": EXTRACTION_TOOL_NAME,
    "description": (
        "Report the trading strategy components stated in the conversation. "
        "Use null for any component that was never mentioned. "
        "Keep values from earlier messages."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "instrument": _nullable_string("Futures contract as stated: ES, NQ, MES, MNQ, YM, RTY, CL, GC, ..."),
            "pattern": {
                "type": ["string", "null"],
                "enum": ["opening_range_breakout", "ema_pullback", "breakout", None],
                "description": "Supported strategy pattern, or null when unclear or unsupported.",
            },
            "stopLoss": _nullable_string('Stop loss as stated: "20 ticks", "below range low", "1 ATR".'),
            "direction": {
                "type": ["string", "null"],
                "enum": ["long", "short", "both", None],
                "description": "Trade direction, or null when not stated.",
            },
            "profitTarget": _nullable_string('Profit target as stated: "2R", "40 ticks", "1.5x range".'),
            "positionSizing": _nullable_string('Position size as stated: "1 contract", "1% risk per trade".'),
            "session": _nullable_string('Trading session as stated: "NY session", "9:30 AM - 11:30 AM ET".'),
            "entryTrigger": _nullable_string('Entry trigger as stated: "break above range high", "pullback to 20 EMA".'),
        },
        "required": [
            "instrument",
            "pattern",
            "stopLoss",
            "direction",
            "profitTarget",
            "positionSizing",
            "session",
            "entryTrigger",
        ],
    },
}
