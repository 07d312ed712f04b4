"""Cost estimation and budget enforcement.

Token counts are estimated with the shared 4-characters-per-token heuristic
and priced from the model catalog. Budget checks read spend from a ledger
and compare the projected total against daily and monthly ceilings. Two
concurrent checks may both pass just under a ceiling; the limit is soft.
"""

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime

from care_embeddings.config.provider_catalog import get_model_spec
from care_embeddings.domain.errors import BudgetExceededError
from care_embeddings.domain.models import BudgetDecision, BudgetState, SpendSnapshot, UsageRecord
from care_embeddings.domain.usage_ledger import SpendLedger
from care_embeddings.utils import estimate_tokens, total_tokens

logger = logging.getLogger(__name__)


class CostEstimator:
    """Estimate tokens and USD cost for embedding requests."""

    def estimate_tokens(self, text: str) -> int:
        """Estimate tokens for one text as ceil(len / 4)."""
        return estimate_tokens(text)

    def estimate_cost(self, tokens: int, model: str) -> float:
        """Price a token count for a model.

        Unknown models are priced at zero with a warning rather than failing.

        Args:
            tokens: Token count
            model: Model name from the catalog

        Returns:
            Estimated cost in USD
        """
        spec = get_model_spec(model)
        if spec is None:
            logger.warning(f"No pricing for unknown model '{model}', assuming zero cost")
            return 0.0
        return tokens * spec.cost_per_million_tokens / 1_000_000

    def estimate_batch_cost(self, texts: list[str], model: str) -> float:
        """Estimate the cost of embedding several texts."""
        return self.estimate_cost(total_tokens(texts), model)


class InMemorySpendLedger:
    """Process-local spend ledger, used when no persistent ledger is configured."""

    def __init__(self, now: Callable[[], datetime] = lambda: datetime.now(UTC)):
        self._now = now
        self._records: list[UsageRecord] = []
        self._lock = threading.Lock()

    def current_spend(self) -> SpendSnapshot:
        """Return spend accumulated in the current UTC day and month."""
        now = self._now()
        with self._lock:
            records = list(self._records)
        return spend_since(records, now)

    def record_usage(self, record: UsageRecord) -> None:
        """Append one billable generation."""
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> list[UsageRecord]:
        """Return a copy of all recorded usage."""
        with self._lock:
            return list(self._records)


def spend_since(records: list[UsageRecord], now: datetime) -> SpendSnapshot:
    """Sum spend for the UTC day and month containing ``now``."""
    daily = 0.0
    monthly = 0.0
    for record in records:
        recorded = record.recorded_at.astimezone(UTC)
        if (recorded.year, recorded.month) == (now.year, now.month):
            monthly += record.cost
            if recorded.day == now.day:
                daily += record.cost
    return SpendSnapshot(daily=daily, monthly=monthly)


class BudgetMonitor:
    """Gate generation on daily and monthly spend ceilings.

    Args:
        ledger: Source of current spend
        daily_budget: Daily ceiling in USD
        monthly_budget: Monthly ceiling in USD
        warning_threshold: Fraction of a ceiling at which a warning is raised
    """

    def __init__(
        self,
        ledger: SpendLedger,
        daily_budget: float = 10.0,
        monthly_budget: float = 200.0,
        warning_threshold: float = 0.8,
    ):
        self._ledger = ledger
        self.daily_budget = daily_budget
        self.monthly_budget = monthly_budget
        self.warning_threshold = warning_threshold

    def budget_state(self) -> BudgetState:
        """Return current spend against the configured ceilings."""
        spend = self._ledger.current_spend()
        return BudgetState(
            daily_spend=spend.daily,
            monthly_spend=spend.monthly,
            daily_budget=self.daily_budget,
            monthly_budget=self.monthly_budget,
            warning_threshold=self.warning_threshold,
        )

    def check_budget(self, estimated_cost: float) -> BudgetDecision:
        """Decide whether spending ``estimated_cost`` keeps both ceilings intact.

        A zero-cost request is always allowed, so free-tier providers keep
        working after a paid ceiling has been reached.

        Args:
            estimated_cost: Projected cost of the pending work in USD

        Returns:
            BudgetDecision; rejected decisions name the ceiling and the overage
        """
        spend = self._ledger.current_spend()
        projected_daily = spend.daily + estimated_cost
        projected_monthly = spend.monthly + estimated_cost

        if estimated_cost > 0:
            if projected_daily > self.daily_budget:
                return BudgetDecision(
                    allowed=False,
                    reason=(
                        f"Would exceed daily budget: ${projected_daily:.4f} > "
                        f"${self.daily_budget:.2f} "
                        f"(over by ${projected_daily - self.daily_budget:.4f})"
                    ),
                    projected_daily=projected_daily,
                    projected_monthly=projected_monthly,
                )
            if projected_monthly > self.monthly_budget:
                return BudgetDecision(
                    allowed=False,
                    reason=(
                        f"Would exceed monthly budget: ${projected_monthly:.4f} > "
                        f"${self.monthly_budget:.2f} "
                        f"(over by ${projected_monthly - self.monthly_budget:.4f})"
                    ),
                    projected_daily=projected_daily,
                    projected_monthly=projected_monthly,
                )

        warning = None
        if self.daily_budget and projected_daily >= self.daily_budget * self.warning_threshold:
            warning = (
                f"Daily spend at {projected_daily / self.daily_budget:.0%} of "
                f"${self.daily_budget:.2f} budget"
            )
        elif self.monthly_budget and projected_monthly >= self.monthly_budget * self.warning_threshold:
            warning = (
                f"Monthly spend at {projected_monthly / self.monthly_budget:.0%} of "
                f"${self.monthly_budget:.2f} budget"
            )
        if warning:
            logger.warning(warning)

        return BudgetDecision(
            allowed=True,
            warning=warning,
            projected_daily=projected_daily,
            projected_monthly=projected_monthly,
        )

    def require_budget(self, estimated_cost: float) -> BudgetDecision:
        """Like check_budget, but raise when the request is rejected.

        Raises:
            BudgetExceededError: If either ceiling would be exceeded
        """
        decision = self.check_budget(estimated_cost)
        if not decision.allowed:
            daily_exceeded = decision.projected_daily > self.daily_budget
            raise BudgetExceededError(
                decision.reason or "Budget exceeded",
                ceiling="daily" if daily_exceeded else "monthly",
                projected=decision.projected_daily if daily_exceeded else decision.projected_monthly,
                limit=self.daily_budget if daily_exceeded else self.monthly_budget,
            )
        return decision
