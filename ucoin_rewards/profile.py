"""Dashboard view of one identity: score, role, streak and claim state"""
import logging
from datetime import date
from typing import Optional

from ucoin_rewards.claims import ClaimTracker
from ucoin_rewards.errors import TransientNetworkError
from ucoin_rewards.ledger import Ledger
from ucoin_rewards.models.rewards import ContributionProfile, Identity
from ucoin_rewards.scoring import ContributionScorer
from ucoin_rewards.services.github import GitHubContributionsAPI
from ucoin_rewards.validation import normalize_address
from ucoin_rewards.withdrawals import WithdrawalRequestManager

logger = logging.getLogger(__name__)


class IdentityContributions:
    """Resolves a wallet to its linked handle and contribution count"""

    def __init__(self, ledger: Ledger, telemetry: GitHubContributionsAPI):
        self.ledger = ledger
        self.telemetry = telemetry

    def identity_for(self, address: str) -> Identity:
        address = normalize_address(address)
        return self.ledger.get_identity(address) or Identity(wallet_address=address, handle=None)

    def __call__(self, address: str) -> int:
        """Contribution count for a wallet; unlinked wallets have none"""
        identity = self.identity_for(address)
        if not identity.handle:
            return 0
        return self.telemetry.get_total_contributions(identity.handle)


class ProfileService:
    """Builds the dashboard profile of an identity"""

    def __init__(
            self,
            contributions: IdentityContributions,
            scorer: ContributionScorer,
            claims: ClaimTracker,
            withdrawals: WithdrawalRequestManager
    ):
        self.contributions = contributions
        self.scorer = scorer
        self.claims = claims
        self.withdrawals = withdrawals

    def get_profile(self, address: str, today: Optional[date] = None) -> ContributionProfile:
        address = normalize_address(address)
        identity = self.contributions.identity_for(address)

        total_contributions = 0
        streak = 0
        if identity.handle:
            try:
                total_contributions = self.contributions.telemetry.get_total_contributions(identity.handle)
                activity = self.contributions.telemetry.get_recent_activity(identity.handle)
                streak = self.scorer.calculate_streak(activity, today)
            except TransientNetworkError as e:
                logger.warning(f"GitHub data unavailable for {identity.handle}: {e}")

        score = self.scorer.score(total_contributions)
        remaining = self.claims.remaining(address, score)
        profile = ContributionProfile(
            identity=identity,
            total_contributions=total_contributions,
            score=score,
            role=self.scorer.determine_role(total_contributions),
            streak=streak,
            cumulative_claimed=self.claims.cumulative_claimed(address),
            remaining=remaining,
            balance=self.withdrawals.balance_of(address),
            status=self.withdrawals.get_status(address)
        )
        logger.info(f"Level {score.level} ({score.title}), XP {score.xp}, "
                    f"earnable {score.earnable_ceiling} for {address}")
        return profile
