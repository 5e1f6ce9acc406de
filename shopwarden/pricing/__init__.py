"""
Pricing Decision Engine
"""

from .competitors import Competitor, fetch_competitors, normalize_competitors
from .engine import KillSwitch, PricingAction, PricingDecision, PricingEngine, Product
from .policy import PricingPolicy, load_policy, parse_policy_document

__all__ = [
    "Competitor",
    "fetch_competitors",
    "normalize_competitors",
    "KillSwitch",
    "PricingAction",
    "PricingDecision",
    "PricingEngine",
    "Product",
    "PricingPolicy",
    "load_policy",
    "parse_policy_document",
]
