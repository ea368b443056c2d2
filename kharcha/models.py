from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, List, Literal


TransactionType = Literal["expense", "income", "balance_adjustment"]
PaymentMode = Literal["upi", "cash"]
AdjustmentType = Literal["add", "subtract"]
Frequency = Literal["daily", "weekly", "monthly", "yearly"]
PeriodKind = Literal["daily", "weekly", "monthly", "quarterly", "yearly", "custom"]
GoalScope = Literal["daily", "weekly", "monthly", "yearly", "custom"]
GoalCategory = Literal["savings", "expense"]

TRANSACTION_TYPES = ("expense", "income", "balance_adjustment")
PAYMENT_MODES = ("upi", "cash")
ADJUSTMENT_TYPES = ("add", "subtract")
FREQUENCIES = ("daily", "weekly", "monthly", "yearly")
GOAL_SCOPES = ("daily", "weekly", "monthly", "yearly", "custom")
GOAL_CATEGORIES = ("savings", "expense")
# only these scopes can grant a goal achievement
TRACKED_GOAL_SCOPES = ("monthly", "yearly", "custom")


@dataclass(frozen=True)
class Transaction:
    amount: float
    t_type: TransactionType
    t_date: date
    mode: PaymentMode = "upi"
    category_id: Optional[str] = None
    note: str = ""
    adjustment_type: Optional[AdjustmentType] = None
    id: Optional[int] = None


@dataclass
class Subscription:
    name: str
    amount: float
    frequency: str
    next_billing_date: Optional[date]
    mode: PaymentMode = "upi"
    category_id: Optional[str] = None
    is_active: bool = True
    billing_day: Optional[int] = None
    id: Optional[str] = None


@dataclass
class StreakRecord:
    current_streak: int = 0
    longest_streak: int = 0
    last_entry_date: Optional[date] = None


@dataclass
class GoalTarget:
    savings: float = 0.0
    expense: float = 0.0


@dataclass
class GoalConfig:
    daily: GoalTarget = field(default_factory=GoalTarget)
    weekly: GoalTarget = field(default_factory=GoalTarget)
    monthly: GoalTarget = field(default_factory=GoalTarget)
    yearly: GoalTarget = field(default_factory=GoalTarget)
    custom: GoalTarget = field(default_factory=GoalTarget)
    custom_savings_name: str = ""
    custom_expense_name: str = ""
    custom_start: Optional[date] = None
    custom_end: Optional[date] = None

    def scope(self, scope: GoalScope) -> GoalTarget:
        if scope not in GOAL_SCOPES:
            raise ValueError(f"Unknown goal scope: {scope}")
        return getattr(self, scope)

    def target(self, scope: GoalScope, category: GoalCategory) -> float:
        if category not in GOAL_CATEGORIES:
            raise ValueError(f"Unknown goal category: {category}")
        return getattr(self.scope(scope), category)


@dataclass
class CompletedGoalsFlags:
    monthly: bool = False
    yearly: bool = False
    custom: bool = False

    def is_set(self, scope: GoalScope) -> bool:
        return scope in TRACKED_GOAL_SCOPES and getattr(self, scope)


@dataclass(frozen=True)
class Totals:
    expense: float = 0.0
    income: float = 0.0
    balance: float = 0.0
    expense_upi: float = 0.0
    expense_cash: float = 0.0
    income_upi: float = 0.0
    income_cash: float = 0.0


@dataclass(frozen=True)
class GoalProgress:
    scope: GoalScope
    category: GoalCategory
    current_value: float
    target_goal: float
    progress: float
    remaining: float
    is_completed: bool
    is_over_limit: bool

    @property
    def is_set(self) -> bool:
        return self.target_goal > 0


@dataclass(frozen=True)
class Achievement:
    id: str
    name: str
    description: str
    icon: str
    unlocked: bool = False


@dataclass(frozen=True)
class AchievementReport:
    new_achievements: List[Achievement]
    all_achievements: List[Achievement]
