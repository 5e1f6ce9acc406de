"""
Pricing Decision Engine
=======================

Computes a price action for one product from competitor data and the brand
policy, and submits price writes through the critical lane.

Decision order (first match wins):

    1. kill switch already tripped             -> BLOCKED
    2. current margin < kill-switch margin     -> trip switch, KILL_SWITCH
    3. floor = cost * (1 + min margin)
    4. no active competitors                   -> aggressive: INCREASE +10%, else HOLD
    5. >= 70% of competitors low on stock      -> INCREASE +5%
       target = cheapest - undercut(strategy)
       target < floor                          -> HOLD
       |target - price| < 1                    -> HOLD
       otherwise                               -> INCREASE / DECREASE to target

The kill switch is process-wide and manual-reset only: once tripped every
pricing write is BLOCKED, for every product, until ``reset_kill_switch()``.
"""

import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from shopwarden.core.config import PricingConfig
from shopwarden.core.escalation import EscalationSink
from shopwarden.core.json_store import JsonDocument
from shopwarden.core.logger import get_logger
from shopwarden.pricing.competitors import Competitor, normalize_competitor
from shopwarden.pricing.policy import PricingPolicy, load_policy

logger = get_logger(__name__)

UNDERCUT = {"aggressive": 2.0, "smart": 1.0, "conservative": 0.0}


class PricingAction(str, Enum):
    HOLD = "HOLD"
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"
    KILL_SWITCH = "KILL_SWITCH"
    BLOCKED = "BLOCKED"


NO_WRITE_ACTIONS = frozenset({PricingAction.HOLD, PricingAction.KILL_SWITCH, PricingAction.BLOCKED})


@dataclass
class Product:
    barcode: str
    price: float
    cost: float = 0.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Product":
        return cls(
            barcode=str(data.get("barcode") or data.get("sku") or ""),
            price=float(data.get("price") or 0),
            cost=float(data.get("cost") or 0),
        )


@dataclass
class PricingDecision:
    barcode: str
    old_price: float
    action: PricingAction
    new_price: float
    reason: str
    dry_run: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "barcode": self.barcode,
            "old_price": self.old_price,
            "action": self.action.value,
            "new_price": self.new_price,
            "reason": self.reason,
            "dry_run": self.dry_run,
            "timestamp": self.timestamp,
        }


def round_price(value: float) -> int:
    """Round half up to a whole currency unit."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ============================================
# Kill switch
# ============================================

class KillSwitch:
    """Process-wide pricing circuit breaker with manual reset.

    When ``state_path`` is given the state is persisted, so a tripped switch
    survives a restart and a reset written by another process is picked up on
    the next ``sync()``. A state file that exists but cannot be parsed keeps
    (or puts) the switch in the tripped state until ``reset()`` rewrites it.
    """

    def __init__(
        self,
        state_path: Optional[Union[str, Path]] = None,
        escalations: Optional[EscalationSink] = None,
    ):
        self._lock = threading.RLock()
        self._doc = JsonDocument(state_path) if state_path else None
        self._escalations = escalations
        self._listeners = EscalationSink()
        self._signature: Optional[Tuple[int, int]] = None
        self.active = False
        self.reason = ""
        self.tripped_at: Optional[str] = None
        self.sync()

    def on_trip(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        self._listeners.subscribe(callback)

    def sync(self) -> None:
        """Reload persisted state if the file changed since the last read."""
        if self._doc is None:
            return
        try:
            stat = os.stat(self._doc.path)
        except FileNotFoundError:
            return
        with self._lock:
            if (stat.st_mtime_ns, stat.st_size) == self._signature:
                return
            self._signature = (stat.st_mtime_ns, stat.st_size)
            data = self._doc.load()
            if isinstance(data, dict) and isinstance(data.get("active"), bool):
                self.active = data["active"]
                self.reason = str(data.get("reason") or "")
                self.tripped_at = data.get("tripped_at")
                return
            if self.active:
                logger.error("Kill switch file %s unreadable, staying tripped", self._doc.path)
                return
            # Fail closed: only an explicit {"active": false} releases the switch.
            self.active = True
            self.reason = f"Kill switch state unreadable ({self._doc.path.name})"
            self.tripped_at = datetime.now(timezone.utc).isoformat()
        logger.error("KILL SWITCH ACTIVATED: %s", self.reason)
        if self._escalations is not None:
            self._escalations.escalate("kill_switch_state_unreadable", {"path": str(self._doc.path)})

    def _persist(self) -> None:
        if self._doc is None:
            return
        self._doc.save(self.state())
        try:
            stat = os.stat(self._doc.path)
            self._signature = (stat.st_mtime_ns, stat.st_size)
        except FileNotFoundError:
            self._signature = None

    def trip(self, reason: str, product_info: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        with self._lock:
            self.active = True
            self.reason = reason
            self.tripped_at = datetime.now(timezone.utc).isoformat()
            self._persist()
            payload = {
                "type": "KILL_SWITCH",
                "reason": reason,
                "product_info": product_info or {},
                "timestamp": self.tripped_at,
            }

        logger.error("KILL SWITCH ACTIVATED: %s", reason, extra={"context": product_info})
        self._listeners.emit(payload)
        if self._escalations is not None:
            self._escalations.emit(payload)
        return payload

    def reset(self) -> None:
        with self._lock:
            self.active = False
            self.reason = ""
            self.tripped_at = None
            self._persist()
        logger.info("Kill switch reset, pricing writes resumed")

    def state(self) -> Dict[str, Any]:
        with self._lock:
            return {"active": self.active, "reason": self.reason, "tripped_at": self.tripped_at}


# ============================================
# Engine
# ============================================

class PricingEngine:
    """Stateless price decisions guarded by the global kill switch."""

    def __init__(
        self,
        lane,
        policy: Optional[PricingPolicy] = None,
        kill_switch: Optional[KillSwitch] = None,
        config: Optional[PricingConfig] = None,
        healer=None,
        autonomy=None,
    ):
        self.lane = lane
        self.config = config or PricingConfig()
        self.policy = policy or load_policy(self.config.policy_path)
        self.kill_switch = kill_switch or KillSwitch()
        self.healer = healer
        self.autonomy = autonomy
        self._decisions: List[Dict[str, Any]] = []
        logger.info("PricingEngine initialized", extra={"context": self.policy.model_dump()})

    # ── policy / kill switch controls ──────────────────────────

    def reload_policy(self, path: Optional[Union[str, Path]] = None) -> PricingPolicy:
        self.policy = load_policy(path or self.config.policy_path)
        logger.info("Brand policy reloaded", extra={"context": self.policy.model_dump()})
        return self.policy

    def on_kill_switch(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        self.kill_switch.on_trip(callback)

    def is_kill_switch_active(self) -> Dict[str, Any]:
        self.kill_switch.sync()
        return {"active": self.kill_switch.active, "reason": self.kill_switch.reason}

    def reset_kill_switch(self) -> None:
        self.kill_switch.reset()

    # ── decisions ──────────────────────────────────────────────

    def calculate_price(
        self,
        product: Union[Product, Mapping[str, Any]],
        competitors: Iterable[Union[Competitor, Mapping[str, Any]]] = (),
        dry_run: bool = False,
    ) -> PricingDecision:
        if not isinstance(product, Product):
            product = Product.from_mapping(product)
        rivals = [c if isinstance(c, Competitor) else normalize_competitor(c) for c in competitors]
        price, cost = product.price, product.cost
        policy = self.policy

        def decide(action: PricingAction, new_price: float, reason: str) -> PricingDecision:
            return PricingDecision(
                barcode=product.barcode,
                old_price=price,
                action=action,
                new_price=new_price,
                reason=reason,
                dry_run=dry_run,
            )

        self.kill_switch.sync()
        if self.kill_switch.active:
            return decide(
                PricingAction.BLOCKED, price,
                f"Kill switch active: {self.kill_switch.reason}. Reset required before pricing resumes.",
            )

        if cost > 0 and price > 0:
            margin = (price - cost) / price * 100
            if margin < policy.kill_switch_margin_pct:
                reason = (
                    f"Margin {margin:.1f}% fell below the {policy.kill_switch_margin_pct:g}% kill-switch limit"
                )
                self.kill_switch.trip(reason, {
                    "barcode": product.barcode, "price": price, "cost": cost, "margin": round(margin, 2),
                })
                if self.autonomy is not None:
                    self.autonomy.record("kill_switch_triggered", f"{product.barcode}: {reason}", "pricing")
                return decide(PricingAction.KILL_SWITCH, price, f"KILL SWITCH: {reason}. Manual approval required.")

        floor = cost * (1 + policy.min_margin_pct / 100) if cost > 0 else 0.0

        active = [c for c in rivals if c.is_active]
        if not active:
            if policy.strategy == "aggressive":
                factor = 1 + self.config.probe_increase_pct / 100
                return decide(
                    PricingAction.INCREASE, round_price(price * factor),
                    f"No active competitors, probing elasticity with +{self.config.probe_increase_pct:g}%",
                )
            return decide(PricingAction.HOLD, price, "No active competitors, holding price")

        cheapest = min(c.price for c in active)
        low_stock = sum(1 for c in rivals if c.is_low_stock(self.config.low_stock_units))
        low_stock_ratio = low_stock / len(rivals)

        # Raising the price can never breach the floor.
        if low_stock_ratio >= self.config.low_stock_ratio:
            factor = 1 + self.config.scarcity_increase_pct / 100
            return decide(
                PricingAction.INCREASE, round_price(price * factor),
                f"{low_stock_ratio:.0%} of competitors are low on stock, "
                f"raising by {self.config.scarcity_increase_pct:g}%",
            )

        target = cheapest - UNDERCUT[policy.strategy]
        if floor > 0 and target < floor:
            return decide(
                PricingAction.HOLD, price,
                f"Cannot follow competitor at {cheapest:g}: minimum margin "
                f"{policy.min_margin_pct:g}% requires at least {floor:.2f}",
            )

        if abs(target - price) < self.config.min_price_change:
            return decide(PricingAction.HOLD, price, "Price already optimal")

        new_price = round_price(target)
        action = PricingAction.DECREASE if target < price else PricingAction.INCREASE
        return decide(action, new_price, f"Cheapest competitor {cheapest:g}, moving to {new_price}")

    async def execute_decision(
        self,
        product: Union[Product, Mapping[str, Any]],
        decision: PricingDecision,
        write_operation: Callable[[str, float], Any],
        priority: str = "normal",
    ) -> Dict[str, Any]:
        """Apply ``decision`` through the critical lane.

        HOLD / KILL_SWITCH / BLOCKED are only logged. A write requested while
        the kill switch is active is converted to BLOCKED.
        """
        if not isinstance(product, Product):
            product = Product.from_mapping(product)

        if decision.action in NO_WRITE_ACTIONS:
            self._log_decision(product, decision)
            return decision.to_dict()

        self.kill_switch.sync()
        if self.kill_switch.active:
            blocked = PricingDecision(
                barcode=product.barcode,
                old_price=product.price,
                action=PricingAction.BLOCKED,
                new_price=product.price,
                reason=f"Kill switch active: {self.kill_switch.reason}",
                dry_run=decision.dry_run,
            )
            self._log_decision(product, blocked)
            return blocked.to_dict()

        barcode, new_price = product.barcode, decision.new_price

        def write() -> Any:
            return write_operation(barcode, new_price)

        def healed_write() -> Any:
            return self.healer.with_healing("pricing", write)

        operation = healed_write if self.healer is not None else write
        label = f"Price {decision.action.value}: {barcode} -> {new_price}"
        try:
            result = await self.lane.enqueue(label, operation, priority=priority, dry_run=decision.dry_run)
        except Exception as exc:
            self._log_decision(product, decision, {"success": False, "error": str(exc)})
            raise

        self._log_decision(product, decision, result)
        return {**decision.to_dict(), "result": result}

    # ── log ────────────────────────────────────────────────────

    def _log_decision(self, product: Product, decision: PricingDecision, result: Any = None) -> None:
        entry = decision.to_dict()
        entry["old_price"] = product.price
        entry["result"] = _summarize_result(result)
        self._decisions.append(entry)
        limit = self.config.max_decisions
        if len(self._decisions) > limit:
            del self._decisions[: len(self._decisions) - limit]
        logger.info("Pricing decision: %s %s", decision.action.value, product.barcode, extra={"context": entry})

    def get_recent_decisions(self, limit: int = 20) -> List[Dict[str, Any]]:
        return list(self._decisions[-limit:])

    def get_status(self) -> Dict[str, Any]:
        return {
            "policy": self.policy.model_dump(),
            "kill_switch": self.is_kill_switch_active(),
            "recent_decisions": len(self._decisions),
            "queue_status": self.lane.get_status(),
        }


def _summarize_result(result: Any) -> Optional[Dict[str, Any]]:
    if result is None:
        return None
    if isinstance(result, Mapping):
        keys: Sequence[str] = ("success", "error", "status", "dry_run")
        return {k: result[k] for k in keys if k in result}
    return {"success": True}
