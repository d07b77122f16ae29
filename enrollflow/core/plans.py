from typing import Optional, Tuple

from enrollflow.store.models import PricingPlan

_FEATURES = [
    "PlayOn Sports Arena - E City",
    "Monday, Wednesday, Friday - 5PM-6PM",
    "Professional coaching",
    "Equipment provided",
]

# 383 per session is the undiscounted base rate
PRICING_PLANS: Tuple[PricingPlan, ...] = (
    PricingPlan(id="monthly", duration="1-month", price=4599, originalPrice=4599, totalPrice=4599,
                sessions=12, features=list(_FEATURES), popular=False, discount="0% OFF"),
    PricingPlan(id="quarterly", duration="3-month", price=13107, originalPrice=13788, totalPrice=13107,
                sessions=36, features=list(_FEATURES), popular=True, discount="5% OFF"),
    PricingPlan(id="halfyearly", duration="6-month", price=24559, originalPrice=27576, totalPrice=24559,
                sessions=72, features=list(_FEATURES), popular=False, discount="11% OFF"),
    PricingPlan(id="yearly", duration="12-month", price=43047, originalPrice=55152, totalPrice=43047,
                sessions=144, features=list(_FEATURES), popular=False, discount="22% OFF"),
)


def find_plan(plan_id: str) -> Optional[PricingPlan]:
    for p in PRICING_PLANS:
        if p.id == plan_id:
            return p
    return None


def extract_plan_duration(plan_id: str) -> str:
    """Map a free-form plan id onto the duration buckets the secondary platform accepts."""
    pid = (plan_id or "").lower()
    # "halfyearly" contains "yearly", so it must be checked first
    if "6-month" in pid or "half" in pid:
        return "6-month"
    if "12-month" in pid or "yearly" in pid or "annual" in pid:
        return "12-month"
    if "3-month" in pid or "quarterly" in pid:
        return "3-month"
    return "1-month"
