"""GitHub GraphQL integration: the contribution telemetry source"""
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import requests

from ucoin_rewards.errors import TelemetryNotFound, TelemetryTimeout, TransientNetworkError

logger = logging.getLogger(__name__)

GITHUB_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

CONTRIBUTIONS_QUERY = """
query($login: String!, $from: DateTime!, $to: DateTime!) {
  user(login: $login) {
    contributionsCollection(from: $from, to: $to) {
      contributionCalendar { totalContributions }
    }
  }
}
"""

RECENT_ACTIVITY_QUERY = """
query($login: String!) {
  user(login: $login) {
    contributionsCollection {
      commitContributionsByRepository(maxRepositories: 50) {
        repository { name url }
        contributions(first: 1, orderBy: {field: OCCURRED_AT, direction: DESC}) {
          nodes { occurredAt }
        }
      }
    }
  }
}
"""


class GitHubContributionsAPI:
    """
    Handles GitHub GraphQL calls with the service-held token.

    The token belongs to the service, never to an individual user session,
    so leaderboard builds do not depend on who is logged in.
    """

    def __init__(
            self,
            token: Optional[str],
            graphql_url: str = "https://api.github.com/graphql",
            timeout: float = 15.0,
            max_retries: int = 1,
            window_days: int = 365
    ):
        self.token = token
        self.graphql_url = graphql_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.window_days = window_days

    def get_total_contributions(
            self,
            handle: str,
            from_time: Optional[datetime] = None,
            to_time: Optional[datetime] = None
    ) -> int:
        """
        Total contributions of a user over a window, by default the trailing window_days.

        Raises:
            TelemetryNotFound: If the handle does not exist
            TelemetryTimeout: If GitHub did not answer within the timeout
            TransientNetworkError: For any other failed or unusable response
        """
        to_time = to_time or datetime.utcnow()
        from_time = from_time or to_time - timedelta(days=self.window_days)

        user = self._query_user(CONTRIBUTIONS_QUERY, {
            'login': handle,
            'from': from_time.strftime(GITHUB_TIMESTAMP_FORMAT),
            'to': to_time.strftime(GITHUB_TIMESTAMP_FORMAT)
        }, handle)

        try:
            total = user['contributionsCollection']['contributionCalendar']['totalContributions']
        except (KeyError, TypeError):
            raise TransientNetworkError(f"Unexpected contributions payload for {handle}")
        if not isinstance(total, int) or isinstance(total, bool):
            raise TransientNetworkError(f"Non-integer contribution count for {handle}: {total!r}")
        return max(total, 0)

    def get_recent_activity(self, handle: str) -> List[datetime]:
        """Latest commit time per repository, newest first"""
        user = self._query_user(RECENT_ACTIVITY_QUERY, {'login': handle}, handle)

        activity = []
        try:
            repositories = user['contributionsCollection']['commitContributionsByRepository']
        except (KeyError, TypeError):
            raise TransientNetworkError(f"Unexpected activity payload for {handle}")

        for repo_contribution in repositories or []:
            nodes = (repo_contribution.get('contributions') or {}).get('nodes') or []
            if not nodes:
                continue
            try:
                activity.append(datetime.strptime(nodes[0]['occurredAt'], GITHUB_TIMESTAMP_FORMAT))
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Skipping unparseable activity entry for {handle}: {nodes[0]}")

        return sorted(activity, reverse=True)

    def _query_user(self, query: str, variables: Dict[str, Any], handle: str) -> Dict[str, Any]:
        """Run a user query and unwrap data.user"""
        payload = self._make_request(query, variables)

        errors = payload.get('errors')
        if errors:
            if any(error.get('type') == 'NOT_FOUND' for error in errors if isinstance(error, dict)):
                raise TelemetryNotFound(f"GitHub user {handle} not found")
            raise TransientNetworkError(f"GraphQL error for {handle}: {errors[0]}")

        data = payload.get('data')
        if not isinstance(data, dict):
            raise TransientNetworkError(f"GraphQL response for {handle} has no data")
        if data.get('user') is None:
            raise TelemetryNotFound(f"GitHub user {handle} not found")
        return data['user']

    def _make_request(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """POST a GraphQL query, retrying connection errors and 5xx responses"""
        headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json'
        }
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'

        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                response = requests.post(
                    self.graphql_url,
                    json={'query': query, 'variables': variables},
                    headers=headers,
                    timeout=self.timeout
                )
            except requests.Timeout:
                raise TelemetryTimeout(f"GitHub did not respond within {self.timeout}s")
            except requests.RequestException as e:
                if attempt == attempts - 1:
                    raise TransientNetworkError(f"GitHub request failed: {e}")
                logger.warning(f"Retrying GitHub request after error: {e}")
                time.sleep(0.5 * (attempt + 1))
                continue

            if response.status_code >= 500:
                if attempt == attempts - 1:
                    raise TransientNetworkError(f"GitHub returned {response.status_code}")
                logger.warning(f"Retrying GitHub request after status {response.status_code}")
                time.sleep(0.5 * (attempt + 1))
                continue

            if response.status_code == 404:
                raise TelemetryNotFound("GitHub returned 404")
            if response.status_code != 200:
                raise TransientNetworkError(f"GitHub request failed: {response.status_code} {response.text}")

            try:
                payload = response.json()
            except ValueError:
                raise TransientNetworkError("GitHub returned invalid JSON")
            if not isinstance(payload, dict):
                raise TransientNetworkError("GitHub returned an unexpected payload")
            return payload
