"""Streaks, achievements and motivational messages.

Everything here is a pure function over explicit state: callers load the
records, pass them in, and persist whatever comes back.
"""
import logging
import random
from dataclasses import dataclass, replace
from datetime import date
from typing import Callable, Optional

from kharcha.models import (
    Achievement, AchievementReport, CompletedGoalsFlags, GoalProgress, GoalScope, StreakRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Keep tracking to see your progress! 💪"


def next_streak(record: StreakRecord, today: date) -> StreakRecord:
    """Apply one day of activity to a streak record.

    Several entries on the same day count once. A day without entries resets
    the current streak to 1 but never lowers the longest one.
    """
    if record.last_entry_date is None:
        return StreakRecord(
            current_streak=1,
            longest_streak=max(record.longest_streak, 1),
            last_entry_date=today,
        )

    gap = (today - record.last_entry_date).days
    if gap == 0:
        return record
    if gap < 0:
        logger.warning(
            "Clock is behind the last recorded entry (%s < %s); streak left unchanged",
            today, record.last_entry_date,
        )
        return record
    if gap == 1:
        current = record.current_streak + 1
        return StreakRecord(
            current_streak=current,
            longest_streak=max(record.longest_streak, current),
            last_entry_date=today,
        )
    return StreakRecord(
        current_streak=1,
        longest_streak=max(record.longest_streak, 1),
        last_entry_date=today,
    )


@dataclass(frozen=True)
class EngagementSnapshot:
    entry_count: int
    current_streak: int
    balance: float
    monthly_goal: GoalProgress
    yearly_goal: GoalProgress
    custom_goal: GoalProgress


@dataclass(frozen=True)
class AchievementRule:
    id: str
    name: str
    icon: str
    describe: Callable[[EngagementSnapshot, str], str]
    check: Callable[[EngagementSnapshot], bool]
    goal_scope: Optional[GoalScope] = None


def _goal_reached(progress: GoalProgress) -> bool:
    return progress.is_completed and progress.target_goal > 0


def _target(progress: GoalProgress) -> str:
    return f"{progress.target_goal:,.0f}"


ACHIEVEMENTS = (
    AchievementRule("first_entry", "First Step", "star",
                    lambda s, sym: "Added your first entry",
                    lambda s: s.entry_count >= 1),
    AchievementRule("ten_entries", "Getting Started", "trophy",
                    lambda s, sym: "Added 10 entries",
                    lambda s: s.entry_count >= 10),
    AchievementRule("fifty_entries", "Consistent Tracker", "medal",
                    lambda s, sym: "Added 50 entries",
                    lambda s: s.entry_count >= 50),
    AchievementRule("hundred_entries", "Dedicated Tracker", "ribbon",
                    lambda s, sym: "Added 100 entries",
                    lambda s: s.entry_count >= 100),
    AchievementRule("streak_7", "Week Warrior", "flame",
                    lambda s, sym: "7 day streak",
                    lambda s: s.current_streak >= 7),
    AchievementRule("streak_30", "Monthly Master", "flame",
                    lambda s, sym: "30 day streak",
                    lambda s: s.current_streak >= 30),
    AchievementRule("savings_10k", "Saver", "wallet",
                    lambda s, sym: f"Saved {sym}10,000",
                    lambda s: s.balance >= 10000),
    AchievementRule("savings_1lakh", "Big Saver", "cash",
                    lambda s, sym: f"Saved {sym}1,00,000",
                    lambda s: s.balance >= 100000),
    AchievementRule("positive_balance", "In the Green", "trending-up",
                    lambda s, sym: "Positive net balance",
                    lambda s: s.balance > 0),
    AchievementRule("monthly_goal_completed", "Monthly Goal Achiever", "trophy",
                    lambda s, sym: f"Reached your monthly savings goal of {sym}{_target(s.monthly_goal)}!",
                    lambda s: _goal_reached(s.monthly_goal),
                    goal_scope="monthly"),
    AchievementRule("yearly_goal_completed", "Yearly Goal Achiever", "medal",
                    lambda s, sym: f"Reached your yearly savings goal of {sym}{_target(s.yearly_goal)}!",
                    lambda s: _goal_reached(s.yearly_goal),
                    goal_scope="yearly"),
    AchievementRule("custom_goal_completed", "Goal Crusher", "ribbon",
                    lambda s, sym: f"Achieved your custom savings goal of {sym}{_target(s.custom_goal)}!",
                    lambda s: _goal_reached(s.custom_goal),
                    goal_scope="custom"),
)


def evaluate_achievements(
        snapshot: EngagementSnapshot,
        unlocked: list[str],
        completed_goals: CompletedGoalsFlags,
        symbol: str = "₹",
) -> tuple[AchievementReport, list[str], CompletedGoalsFlags]:
    """Run every achievement rule once against the snapshot.

    Returns the report plus the grown registry and goal flags. Goal
    achievements are gated on their completed flag instead of the registry,
    so clearing the flag lets them fire again for a new target.
    """
    registry = list(unlocked)
    flags = replace(completed_goals)
    newly_unlocked = []

    for rule in ACHIEVEMENTS:
        if rule.goal_scope:
            if flags.is_set(rule.goal_scope) or not rule.check(snapshot):
                continue
            setattr(flags, rule.goal_scope, True)
        elif rule.id in registry or not rule.check(snapshot):
            continue

        if rule.id not in registry:
            registry.append(rule.id)
        newly_unlocked.append(rule.id)
        logger.info("Achievement unlocked: %s", rule.id)

    def build(rule: AchievementRule) -> Achievement:
        return Achievement(
            id=rule.id,
            name=rule.name,
            description=rule.describe(snapshot, symbol),
            icon=rule.icon,
            unlocked=rule.id in registry,
        )

    everything = [build(rule) for rule in ACHIEVEMENTS]
    report = AchievementReport(
        new_achievements=[a for a in everything if a.id in newly_unlocked],
        all_achievements=everything,
    )
    return report, registry, flags


def motivational_candidates(
        current_streak: int,
        monthly_goal: GoalProgress,
        balance: float,
        entry_count: int,
) -> list[str]:
    messages = []

    if current_streak >= 30:
        messages.append(f"🔥 Amazing! {current_streak} day streak! You're unstoppable!")
    elif current_streak >= 7:
        messages.append(f"🔥 Great job! {current_streak} days in a row! Keep it up!")
    elif current_streak > 0:
        messages.append(f"🔥 {current_streak} day streak! You're doing great!")

    if monthly_goal.is_completed:
        messages.append("🎉 Congratulations! You've achieved your monthly goal!")
    elif monthly_goal.progress >= 75:
        messages.append(f"💪 You're {round(monthly_goal.progress)}% to your monthly goal! Almost there!")
    elif monthly_goal.progress >= 50:
        messages.append("📈 You're halfway to your monthly goal! Keep going!")

    if balance > 0:
        messages.append("💰 Your net balance is positive! Great financial management!")

    if entry_count >= 100:
        messages.append(f"🏆 Wow! You've tracked {entry_count} entries! That's dedication!")
    elif entry_count >= 50:
        messages.append(f"⭐ You've tracked {entry_count} entries! Keep building that habit!")

    return messages


def select_motivational_message(
        current_streak: int,
        monthly_goal: GoalProgress,
        balance: float,
        entry_count: int,
        rng: Optional[random.Random] = None,
) -> str:
    messages = motivational_candidates(current_streak, monthly_goal, balance, entry_count)
    if not messages:
        return DEFAULT_MESSAGE
    return (rng or random).choice(messages)
