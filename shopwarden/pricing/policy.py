"""
Brand pricing policy.

The policy is a human-edited free-text document (``BRAND.md``). Numeric fields
and strategy keywords are pulled out with regular expressions. Fallback is per
field: a missing or out-of-range value takes its default and the rest of the
document is kept. A kill-switch margin above the minimum margin is clamped
down to it. An unreadable file yields the defaults.
"""

import re
from pathlib import Path
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

from shopwarden.core.logger import get_logger

logger = get_logger(__name__)

Strategy = Literal["aggressive", "smart", "conservative"]

_NUMBER = r"[:\s]*%?\s*(\d+(?:[.,]\d+)?)"
_MIN_MARGIN_RE = re.compile(r"(?:Minimum Kar Marjı|Min(?:imum)?\.? (?:Profit )?Margin)" + _NUMBER, re.IGNORECASE)
_MAX_DISCOUNT_RE = re.compile(r"(?:Maksimum İndirim|Max(?:imum)?\.? Discount)" + _NUMBER, re.IGNORECASE)
_KILL_SWITCH_RE = re.compile(r"(?:Kill[ -]?Switch(?: Margin)?|Acil Durdurma Marjı)" + _NUMBER, re.IGNORECASE)


class PricingPolicy(BaseModel):
    """Margin guard rails and undercut strategy for the pricing engine."""

    min_margin_pct: float = Field(default=15.0, ge=0, lt=100)
    max_discount_pct: float = Field(default=30.0, ge=0, le=100)
    kill_switch_margin_pct: float = Field(default=5.0, ge=0, lt=100)
    strategy: Strategy = "smart"

    @model_validator(mode="after")
    def _kill_switch_below_floor(self) -> "PricingPolicy":
        if self.kill_switch_margin_pct > self.min_margin_pct:
            raise ValueError("kill_switch_margin_pct must not exceed min_margin_pct")
        return self


def _number(pattern: "re.Pattern[str]", text: str) -> Optional[float]:
    match = pattern.search(text)
    if not match:
        return None
    return float(match.group(1).replace(",", "."))


def _strategy(text: str) -> Strategy:
    lowered = text.lower()
    if "agresif" in lowered or "aggressive" in lowered:
        return "aggressive"
    if "muhafazakar" in lowered or "conservative" in lowered:
        return "conservative"
    return "smart"


def parse_policy_document(text: str) -> PricingPolicy:
    """Extract a policy from free text. Invalid values fall back to their defaults."""
    fields = {"strategy": _strategy(text)}
    for key, pattern in (
        ("min_margin_pct", _MIN_MARGIN_RE),
        ("max_discount_pct", _MAX_DISCOUNT_RE),
        ("kill_switch_margin_pct", _KILL_SWITCH_RE),
    ):
        value = _number(pattern, text)
        if value is not None:
            fields[key] = value

    try:
        return PricingPolicy(**fields)
    except ValidationError as exc:
        for error in exc.errors():
            key = error["loc"][0] if error["loc"] else None
            if key in fields:
                logger.warning(
                    "Brand policy: ignoring %s=%r (%s), using default", key, fields.pop(key), error["msg"],
                )

    floor = fields.get("min_margin_pct", PricingPolicy.model_fields["min_margin_pct"].default)
    kill_switch = fields.get("kill_switch_margin_pct", PricingPolicy.model_fields["kill_switch_margin_pct"].default)
    if kill_switch > floor:
        logger.warning("Brand policy: kill-switch margin %g%% above minimum margin, clamped to %g%%", kill_switch, floor)
        fields["kill_switch_margin_pct"] = floor
    return PricingPolicy(**fields)


def load_policy(path: Union[str, Path]) -> PricingPolicy:
    """Read and parse the policy document at ``path``."""
    policy_path = Path(path)
    if not policy_path.exists():
        logger.info("No brand policy at %s, using defaults", policy_path)
        return PricingPolicy()
    try:
        text = policy_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Brand policy unreadable, using defaults: %s", exc)
        return PricingPolicy()

    policy = parse_policy_document(text)
    logger.info("Brand policy parsed", extra={"context": policy.model_dump()})
    return policy
