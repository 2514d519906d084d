"""Abstract base classes for data providers."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from oqscore.models.datatypes import ProviderReply


class ScoringProvider(ABC):
    """Interface for a large-language-model provider that judges the Evidence Packet.

    Attributes:
        name: Stable provider identity used for weighting (``"anthropic"``,
            ``"openai"``, ``"gemini"``).
        model: Model identifier sent to the provider API.
    """

    name: str = ""
    model: str = ""

    @abstractmethod
    def complete(self, prompt: str) -> ProviderReply:
        """
        Send the prompt and return the raw completion.

        Args:
            prompt (str): The fully composed Evidence Packet.

        Returns:
            ProviderReply: Completion text plus token usage.

        Raises:
            ProviderError: On HTTP failure or an empty completion.
        """
        pass


class TimeSeriesProvider(ABC):
    """Interface for fetching dated observations of an external series."""

    @abstractmethod
    def fetch_observations(self, series_id: str, limit: int = 40) -> List[Dict[str, Any]]:
        """
        Fetch observations newest-first.

        Args:
            series_id (str): Source-specific series identifier.
            limit (int): Maximum number of observations.

        Returns:
            List[Dict[str, Any]]: ``{"date": "YYYY-MM-DD", "value": ...}`` rows.
        """
        pass


class LeaderboardProvider(ABC):
    """Interface for a scraped leaderboard: one GET plus a pure parser."""

    key: str = ""

    @abstractmethod
    def fetch(self) -> Dict[str, Any]:
        """
        Fetch and parse the leaderboard.

        Returns:
            Dict[str, Any]: JSON-serialisable snapshot stored under ``key``.

        Raises:
            LeaderboardParseError: When the page content cannot be trusted.
        """
        pass
