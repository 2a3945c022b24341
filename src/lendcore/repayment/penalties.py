"""Late-payment penalty assessment."""

from decimal import Decimal
from typing import Any, Dict, Optional

from ..core.config import EngineConfig
from ..core.money import ZERO, round_money, to_decimal


def calculate_penalty(outstanding_principal: Any, days_overdue: int,
                      policy: Optional[Dict[str, Any]] = None) -> Decimal:
    """Penalty for ``days_overdue`` days in arrears.

    After the grace period, ``rate_per_period`` of outstanding principal is
    charged for every started ``period_days`` block.
    """
    policy = policy or EngineConfig().get_penalty_policy()
    principal = to_decimal(outstanding_principal)
    chargeable_days = days_overdue - policy["grace_days"]
    if principal <= 0 or chargeable_days <= 0:
        return ZERO

    period_days = policy["period_days"]
    periods = -(-chargeable_days // period_days)
    return round_money(principal * to_decimal(policy["rate_per_period"]) * periods)
