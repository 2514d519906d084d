"""Exception types raised across the scoring pipeline."""

from typing import Any, List, Optional


class OQError(Exception):
    """Base class for all pipeline errors."""


class LeaderboardParseError(OQError):
    """A leaderboard page was reachable but its content could not be trusted."""


class ProviderError(OQError):
    """A model provider returned an HTTP error or an empty completion."""


class InvalidResponseError(OQError):
    """A model reply was not valid JSON or lacked a required field."""


class AllProvidersFailedError(OQError):
    """Every configured provider exhausted its retries.

    ``usages`` carries the synthetic failure entries so they can still be
    recorded.
    """

    def __init__(self, message: str, usages: Optional[List[Any]] = None) -> None:
        super().__init__(message)
        self.usages = list(usages or [])


class SnapshotExistsError(OQError):
    """A score snapshot is already stored for the requested date."""

    def __init__(self, date: str) -> None:
        super().__init__(f"Snapshot already exists for {date}")
        self.date = date
