"""Wires the rewards core together from settings"""
import logging
from typing import Optional

from ucoin_rewards.api import RewardsApi
from ucoin_rewards.claims import ClaimTracker
from ucoin_rewards.config import Settings
from ucoin_rewards.credentials import ServiceCredentials
from ucoin_rewards.db import Database
from ucoin_rewards.leaderboard import LeaderboardAggregator, TelemetryFanout
from ucoin_rewards.ledger import SqlLedger
from ucoin_rewards.polling import SessionPoller
from ucoin_rewards.profile import IdentityContributions, ProfileService
from ucoin_rewards.scoring import ContributionScorer
from ucoin_rewards.services.github import GitHubContributionsAPI
from ucoin_rewards.withdrawals import WithdrawalRequestManager

logger = logging.getLogger(__name__)


class RewardsCore:
    """Holds one instance of every core component for a process"""

    def __init__(
            self,
            settings: Settings,
            database: Database,
            github: Optional[GitHubContributionsAPI] = None,
            watch_leaderboard: bool = True
    ):
        """
        Build the components.

        Raises:
            ValueError: If APPROVER_ADDRESS is not configured
            CredentialError: If the GitHub token cannot be resolved
        """
        if not settings.APPROVER_ADDRESS:
            raise ValueError("APPROVER_ADDRESS setting is required")

        self.settings = settings
        self.scorer = ContributionScorer()
        self.ledger = SqlLedger(database, settings.APPROVER_ADDRESS)

        telemetry_settings = settings.telemetry_settings
        if github is None:
            credentials = ServiceCredentials.from_settings(settings)
            github = GitHubContributionsAPI(
                credentials.github_token,
                graphql_url=telemetry_settings.graphql_url,
                timeout=telemetry_settings.timeout_seconds,
                max_retries=telemetry_settings.max_retries,
                window_days=telemetry_settings.window_days
            )
        self.github = github

        self.contributions = IdentityContributions(self.ledger, self.github)
        self.claims = ClaimTracker(self.ledger, self.scorer, self.contributions)
        self.withdrawals = WithdrawalRequestManager(self.ledger, self.claims)
        self.fanout = TelemetryFanout(
            self.github,
            self.scorer,
            max_concurrency=telemetry_settings.max_concurrency,
            timeout=telemetry_settings.timeout_seconds,
            window_days=telemetry_settings.window_days
        )
        self.leaderboard = LeaderboardAggregator(self.ledger, self.fanout)
        self.profiles = ProfileService(self.contributions, self.scorer, self.claims, self.withdrawals)
        self.api = RewardsApi(self.fanout, self.withdrawals)

        # Completions that bypass the withdrawal manager drop the cached claim totals
        self.ledger.subscribe(self.claims.on_ledger_event)
        if watch_leaderboard:
            self.leaderboard.watch()

    def close(self) -> None:
        """Detach the ledger listeners and wait for a running leaderboard rebuild"""
        self.leaderboard.unwatch()
        self.ledger.unsubscribe(self.claims.on_ledger_event)

    def session_poller(self, address: str) -> SessionPoller:
        polling = self.settings.polling_settings
        return SessionPoller(
            self.withdrawals,
            address,
            status_interval=polling.status_interval,
            balance_interval=polling.balance_interval
        )
