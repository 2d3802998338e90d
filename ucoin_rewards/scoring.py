"""Contribution scoring: XP, levels, titles and token entitlement"""
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from ucoin_rewards.config import XP_PER_CONTRIBUTION
from ucoin_rewards.models.rewards import ScoreResult

TITLES = [
    'Apprentice', 'Aspiring', 'Novice', 'Enthusiastic', 'Explorer',
    'Code Craftsman', 'Skilled', 'Proficient', 'Champion', 'Quality',
    'Expert', 'Professional', 'Innovative', 'Veteran', 'Rising',
    'Master', 'Conquerer', 'Top Tier', 'Insightful', 'Legendary', 'SUPREME'
]

LEVELS_PER_TITLE = 5
BASE_TOKENS_PER_LEVEL = 5
TOKEN_GROWTH_RATE = 1.08
CEILING_PRECISION = Decimal('0.0001')


class ContributionScorer:
    """Turns contribution counts into XP, levels and earnable UCoin"""

    def xp(self, contributions: int) -> int:
        """Calculate XP for a raw contribution count"""
        return max(int(contributions), 0) * XP_PER_CONTRIBUTION

    def level(self, xp: int) -> int:
        """Largest level L such that L * (L + 1) * 50 <= xp"""
        xp = max(int(xp), 0)
        level = 0
        required_xp = 0
        while required_xp <= xp:
            level += 1
            required_xp = level * (level + 1) * 50
        return max(level - 1, 0)

    def next_level_xp(self, level: int) -> int:
        level = max(int(level), 0)
        return (level + 1) * (level + 2) * 50

    def title(self, level: int) -> str:
        index = min(max(int(level), 0) // LEVELS_PER_TITLE, len(TITLES) - 1)
        return TITLES[index]

    def earnable_per_level(self, level: int) -> float:
        """Tokens unlocked by reaching a single level"""
        if level <= 0:
            return 0.0
        return BASE_TOKENS_PER_LEVEL * TOKEN_GROWTH_RATE ** level

    def earnable_ceiling(self, level: int) -> Decimal:
        """Cumulative tokens an identity may claim at a level, to 4 places"""
        total = sum(self.earnable_per_level(i) for i in range(1, max(int(level), 0) + 1))
        return Decimal(repr(total)).quantize(CEILING_PRECISION, rounding=ROUND_HALF_UP)

    def score(self, contributions: int) -> ScoreResult:
        """Calculate the full score for a contribution count"""
        xp = self.xp(contributions)
        level = self.level(xp)
        return ScoreResult(
            xp=xp,
            level=level,
            title=self.title(level),
            next_level_xp=self.next_level_xp(level),
            earnable_ceiling=self.earnable_ceiling(level)
        )

    def determine_role(self, contributions: int) -> str:
        """Map total contributions to a community role"""
        if contributions > 100:
            return 'Maintainer'
        elif contributions > 50:
            return 'Reviewer'
        return 'Contributor'

    def calculate_streak(
            self,
            activity: Iterable[Union[date, datetime]],
            today: Optional[date] = None
    ) -> int:
        """
        Count consecutive days with activity.

        The streak only counts if the most recent activity day is today or
        yesterday; otherwise it is broken and 0 is returned.
        """
        today = today or date.today()
        days = sorted(
            {a.date() if isinstance(a, datetime) else a for a in activity},
            reverse=True
        )
        if not days or days[0] not in (today, today - timedelta(days=1)):
            return 0

        streak = 1
        expected = days[0]
        for day in days[1:]:
            if day != expected - timedelta(days=1):
                break
            streak += 1
            expected = day
        return streak
