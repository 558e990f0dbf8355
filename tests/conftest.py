"""
Pytest fixtures for the merged pull request report tests.

Usage:
    def test_something(raw_pr_factory, full_name_config):
        pr = raw_pr_factory(merged_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        ...
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
from unittest.mock import Mock

import pytest

from fetch_merged_prs import ReportConfig, ReportMode


def iso(value: datetime) -> str:
    """Render a datetime the way the GitHub API does."""
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def make_response(prs: List[Dict], status_code: int = 200, reason: str = "OK") -> Mock:
    """Mock of a requests.Response for one page of pull requests."""
    response = Mock()
    response.status_code = status_code
    response.reason = reason
    response.ok = 200 <= status_code < 400
    response.json.return_value = prs
    return response


# ============================================================================
# Config Fixtures
# ============================================================================

@pytest.fixture
def period_start() -> datetime:
    return datetime(2023, 10, 1, tzinfo=timezone.utc)


@pytest.fixture
def period_end() -> datetime:
    return datetime(2024, 9, 30, 23, 59, 59, tzinfo=timezone.utc)


@pytest.fixture
def full_name_config(tmp_path, period_start, period_end) -> ReportConfig:
    """Config as built from REPO=acme/widgets."""
    return ReportConfig(
        owner="acme",
        name="widgets",
        mode=ReportMode.FULL_NAME,
        token="fake_github_token",
        start_at=period_start,
        end_at=period_end,
        output_dir=str(tmp_path / "reports"),
    )


@pytest.fixture
def owner_and_name_config(full_name_config) -> ReportConfig:
    """Config as built from REPO_OWNER=acme and REPO_NAME=widgets."""
    return ReportConfig(
        owner=full_name_config.owner,
        name=full_name_config.name,
        mode=ReportMode.OWNER_AND_NAME,
        token=full_name_config.token,
        start_at=full_name_config.start_at,
        end_at=full_name_config.end_at,
        output_dir=full_name_config.output_dir,
    )


# ============================================================================
# Pull Request Factories
# ============================================================================

@pytest.fixture
def raw_pr_factory() -> Callable[..., Dict]:
    """Build raw pull request objects shaped like the REST API's."""
    counter = {"number": 0}

    def _make(merged_at: Optional[datetime] = None,
              created_at: Optional[datetime] = None,
              title: Optional[str] = None,
              login: Optional[str] = "octocat") -> Dict:
        counter["number"] += 1
        number = counter["number"]
        if created_at is None:
            created_at = (merged_at or datetime(2024, 1, 1, tzinfo=timezone.utc)) - timedelta(days=1)
        closed_at = merged_at or created_at + timedelta(hours=1)
        return {
            "number": number,
            "title": title if title is not None else f"Change {number}",
            "html_url": f"https://github.com/acme/widgets/pull/{number}",
            "user": {"login": login} if login is not None else None,
            "created_at": iso(created_at),
            "merged_at": iso(merged_at) if merged_at else None,
            "closed_at": iso(closed_at),
        }

    return _make


@pytest.fixture
def page_factory(raw_pr_factory) -> Callable[..., List[Dict]]:
    """Build a page of merged PRs, newest first, one hour apart."""

    def _make(count: int, newest_merge: datetime) -> List[Dict]:
        return [
            raw_pr_factory(merged_at=newest_merge - timedelta(hours=i))
            for i in range(count)
        ]

    return _make
