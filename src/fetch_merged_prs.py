#!/usr/bin/env python3
"""
Merged Pull Request Audit Report

This script fetches the pull requests merged into a repository's main branch
during a compliance period and exports them to CSV. The report is meant as
evidence for change-management controls (SOC 2, HITRUST and similar audits).

Uses GitHub's REST "list pull requests" endpoint, walking closed PRs newest
first and stopping once the merged PRs collected fall behind the start of the
period.

Features:
- Single repository given as REPO=owner/name or REPO_OWNER + REPO_NAME
- Default period of October 1st 2023 to September 30th 2024
- Only merged PRs are reported; closed-without-merge PRs are dropped
- Report sorted newest merge first

Usage:
    # Repository as owner/name (URL,Title,Author,Created,Merged columns)
    export REPO=myorg/myrepo
    export ACCESS_TOKEN=ghp_...
    python src/fetch_merged_prs.py

    # Owner and name separately (Repo,Title,URL,Created,Merged columns)
    export REPO_OWNER=myorg
    export REPO_NAME=myrepo
    export ACCESS_TOKEN=ghp_...
    python src/fetch_merged_prs.py

    # Custom period
    export START_AT=2024-01-01T00:00:00Z
    export END_AT=2024-12-31T23:59:59Z

Requirements:
    - Python 3.11+
    - GitHub Personal Access Token with 'repo' scope
    - pip install requests python-dotenv
"""

import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime
from enum import Enum
from typing import List, Dict, Optional, Mapping, Tuple, TextIO

import requests
from dotenv import find_dotenv, load_dotenv


# ============================================================================
# Defaults
# ============================================================================

# One-year compliance period
DEFAULT_START_AT = datetime(2023, 10, 1, 0, 0, 0, tzinfo=timezone.utc)
DEFAULT_END_AT = datetime(2024, 9, 30, 23, 59, 59, tzinfo=timezone.utc)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_BASE_BRANCH = "main"

# GitHub's maximum page size for the pulls endpoint
PER_PAGE = 100

HELP_ARGS = ("help", "-h", "--help")

USAGE = """
    Example usage:

      export REPO=org/repo
      export ACCESS_TOKEN=ghp_...

      # Or, with owner and name separately
      export REPO_OWNER=org
      export REPO_NAME=repo

      # Optional
      export START_AT=2023-10-01T00:00:00Z
      export END_AT=2024-09-30T23:59:59Z
      export BASE_BRANCH=main
      export GITHUB_API_URL=https://api.github.com
      export OUTPUT_DIR=.

      pr-audit-report

    Variables can also be placed in a .env file in the current directory.
    Get your GitHub Access Token at https://github.com/settings/tokens
"""


# ============================================================================
# Errors
# ============================================================================

class ConfigError(Exception):
    """Raised when the environment does not describe a runnable report."""


class GitHubAPIError(Exception):
    """Raised when GitHub answers a page request with a non-success status."""

    def __init__(self, status_code: int, reason: str):
        self.status_code = status_code
        self.reason = reason
        super().__init__(f"Error fetching pull requests: {status_code} {reason}")


# ============================================================================
# Data Model
# ============================================================================

class ReportMode(Enum):
    """Which repository inputs were given, which also picks the CSV columns"""

    OWNER_AND_NAME = "owner_and_name"
    FULL_NAME = "full_name"


@dataclass(frozen=True)
class SlimPullRequest:
    """The fields of a merged pull request that end up in the report"""

    title: str
    url: str
    created_at: datetime
    merged_at: datetime
    author: str = ""


@dataclass(frozen=True)
class ReportConfig:
    """Report settings resolved once from the environment"""

    owner: str
    name: str
    mode: ReportMode
    token: str
    start_at: datetime = DEFAULT_START_AT
    end_at: datetime = DEFAULT_END_AT
    base_branch: str = DEFAULT_BASE_BRANCH
    api_url: str = DEFAULT_API_URL
    output_dir: str = "."

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


# ============================================================================
# Timestamp Helpers
# ============================================================================

def parse_instant(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp into an aware UTC datetime

    GitHub returns timestamps with a trailing "Z". Values without an offset
    are taken to be UTC.

    Args:
        value: Timestamp such as "2024-01-01T00:00:00Z"

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        ValueError: If the value is not an ISO 8601 timestamp
    """
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_instant(value: datetime) -> str:
    """Render a datetime as UTC with milliseconds, e.g. 2024-01-01T00:00:00.000Z"""
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S") + f".{utc.microsecond // 1000:03d}Z"


def format_boundary(value: datetime) -> str:
    """Render a period boundary for filenames, e.g. Sun, 01 Oct 2023 00:00:00 GMT"""
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


# ============================================================================
# Configuration
# ============================================================================

def _read_instant(environ: Mapping[str, str], key: str, default: datetime) -> datetime:
    value = environ.get(key)
    if not value:
        return default
    try:
        return parse_instant(value)
    except ValueError:
        raise ConfigError(
            f'Expected "{key}" to be an ISO 8601 timestamp, got "{value}".'
        )


def _require(environ: Mapping[str, str], key: str) -> str:
    value = environ.get(key)
    if not value:
        raise ConfigError(
            f'Expected "{key}" to be defined.\n'
            f"   It needs to be passed as an environment variable."
        )
    return value


def load_config(environ: Optional[Mapping[str, str]] = None) -> ReportConfig:
    """
    Build the report configuration from environment variables

    REPO=owner/name selects the full-name mode. When REPO is unset, both
    REPO_OWNER and REPO_NAME are required. The token is read from
    ACCESS_TOKEN, falling back to GITHUB_TOKEN.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        A populated ReportConfig

    Raises:
        ConfigError: If a required variable is missing or a value is invalid
    """
    if environ is None:
        environ = os.environ

    if environ.get("REPO") or not (environ.get("REPO_OWNER") or environ.get("REPO_NAME")):
        repo = _require(environ, "REPO")
        owner, _, name = repo.strip().partition("/")
        if not owner or not name or "/" in name:
            raise ConfigError(f'Expected "REPO" to look like owner/name, got "{repo}".')
        mode = ReportMode.FULL_NAME
    else:
        owner = _require(environ, "REPO_OWNER").strip()
        name = _require(environ, "REPO_NAME").strip()
        mode = ReportMode.OWNER_AND_NAME

    token = (environ.get("ACCESS_TOKEN") or environ.get("GITHUB_TOKEN")
             or _require(environ, "ACCESS_TOKEN"))

    start_at = _read_instant(environ, "START_AT", DEFAULT_START_AT)
    end_at = _read_instant(environ, "END_AT", DEFAULT_END_AT)
    if start_at > end_at:
        raise ConfigError(
            f"START_AT must not be later than END_AT. "
            f"Got {format_instant(start_at)} > {format_instant(end_at)}."
        )

    return ReportConfig(
        owner=owner,
        name=name,
        mode=mode,
        token=token,
        start_at=start_at,
        end_at=end_at,
        base_branch=environ.get("BASE_BRANCH") or DEFAULT_BASE_BRANCH,
        api_url=(environ.get("GITHUB_API_URL") or DEFAULT_API_URL).rstrip("/"),
        output_dir=environ.get("OUTPUT_DIR") or ".",
    )


def show_usage(stream: Optional[TextIO] = None) -> None:
    print(USAGE, file=stream or sys.stdout)


# ============================================================================
# Main Fetcher Class
# ============================================================================

class GitHubPRFetcher:
    """
    Fetches merged pull requests for one repository from the GitHub REST API

    Pages are requested strictly in order, newest created first, because
    whether another page is needed depends on the last merged PR seen so far.
    """

    def __init__(self, config: ReportConfig):
        """
        Initialize the fetcher with GitHub authentication

        Args:
            config: Report configuration holding the repository and token
        """
        self.config = config
        self.api_url = f"{config.api_url}/repos/{config.owner}/{config.name}/pulls"
        self.headers = {
            "Authorization": f"Bearer {config.token}",
            "Accept": "application/vnd.github.v3+json"
        }

    def _get_page(self, page: int) -> List[Dict]:
        """
        Request one page of closed pull requests

        Args:
            page: 1-based page number

        Returns:
            Raw pull request objects from the API

        Raises:
            GitHubAPIError: On any non-success HTTP status
        """
        # https://docs.github.com/en/rest/pulls/pulls#list-pull-requests
        params = {
            "state": "closed",
            "base": self.config.base_branch,
            "sort": "created",
            "direction": "desc",
            "per_page": PER_PAGE,
            "page": page,
        }
        response = requests.get(self.api_url, params=params, headers=self.headers)

        if not response.ok:
            raise GitHubAPIError(response.status_code, response.reason)

        return response.json()

    def fetch_merged_pull_requests(self) -> List[SlimPullRequest]:
        """
        Collect merged pull requests until the start of the period is passed

        Stops once the last merged PR collected was merged before the start
        of the period, on an empty page, or after a short (final) page. Pages
        are ordered by creation time, so a PR created long before the period
        but merged inside it can be missed.

        Returns:
            Merged pull requests in fetch order, possibly including some
            outside the period
        """
        start_at = self.config.start_at
        all_prs: List[SlimPullRequest] = []
        page = 1

        print(f"Fetching merged PRs in {self.config.full_name} (base: {self.config.base_branch})...")

        while not all_prs or all_prs[-1].merged_at >= start_at:
            raw_prs = self._get_page(page)

            if not raw_prs:
                print(f"  Page {page}: no more PRs")
                break

            merged = to_slim_pull_requests(raw_prs)
            all_prs.extend(merged)

            print(f"  Page {page}: {len(merged)}/{len(raw_prs)} merged (total so far: {len(all_prs)})")

            if len(raw_prs) < PER_PAGE:
                break

            page += 1

        print(f"✓ Total merged PRs fetched: {len(all_prs)}\n")
        return all_prs


# ============================================================================
# Data Processing Functions
# ============================================================================

def to_slim_pull_requests(prs: List[Dict]) -> List[SlimPullRequest]:
    """
    Keep the merged pull requests of a page and extract the report fields

    Args:
        prs: Raw pull request objects from the REST API

    Returns:
        One SlimPullRequest per PR with a merge timestamp, in page order
    """
    slim = []

    for pr in prs:
        # Closed without merging
        if not pr.get("merged_at"):
            continue

        user = pr.get("user") or {}
        slim.append(SlimPullRequest(
            title=pr.get("title") or "",
            url=pr["html_url"],
            author=user.get("login") or "",
            created_at=parse_instant(pr["created_at"]),
            merged_at=parse_instant(pr["merged_at"]),
        ))

    return slim


def filter_to_period(prs: List[SlimPullRequest], start_at: datetime,
                     end_at: datetime) -> List[SlimPullRequest]:
    """
    Sort by merge time, newest first, and keep PRs merged within the period

    Both boundaries are inclusive.

    Args:
        prs: Merged pull requests in any order
        start_at: First instant of the period
        end_at: Last instant of the period

    Returns:
        Pull requests merged in [start_at, end_at], newest merge first
    """
    ordered = sorted(prs, key=lambda pr: pr.merged_at, reverse=True)
    return [pr for pr in ordered if start_at <= pr.merged_at <= end_at]


# ============================================================================
# Export and Summary Functions
# ============================================================================

# CSV column order per mode
CSV_COLUMNS = {
    ReportMode.OWNER_AND_NAME: ["Repo", "Title", "URL", "Created", "Merged"],
    ReportMode.FULL_NAME: ["URL", "Title", "Author", "Created", "Merged"],
}


def quote_title(title: str) -> str:
    """Wrap a title in double quotes, doubling any quotes inside it"""
    return '"' + title.replace('"', '""') + '"'


def build_csv(prs: List[SlimPullRequest], config: ReportConfig) -> str:
    """
    Render the report as CSV text

    Titles are always quoted. URLs, logins and timestamps never contain
    commas or quotes, so they are written as-is.

    Args:
        prs: Pull requests to include, already filtered and sorted
        config: Report configuration (selects the column set)

    Returns:
        CSV text with a header row, ending in a newline
    """
    lines = [",".join(CSV_COLUMNS[config.mode])]

    for pr in prs:
        created = format_instant(pr.created_at)
        merged = format_instant(pr.merged_at)
        if config.mode is ReportMode.OWNER_AND_NAME:
            row = [config.name, quote_title(pr.title), pr.url, created, merged]
        else:
            row = [pr.url, quote_title(pr.title), pr.author, created, merged]
        lines.append(",".join(row))

    return "\n".join(lines) + "\n"


def report_filename(config: ReportConfig) -> str:
    """Build the report file name from the repository name and period"""
    return (
        f"{config.name} pull requests from "
        f"{format_boundary(config.start_at)} to {format_boundary(config.end_at)}.csv"
    )


def export_to_csv(prs: List[SlimPullRequest], config: ReportConfig) -> str:
    """
    Write the report to the output directory, replacing any previous copy

    Args:
        prs: Pull requests to include, already filtered and sorted
        config: Report configuration

    Returns:
        Path of the written file
    """
    os.makedirs(config.output_dir, exist_ok=True)
    output_path = os.path.join(config.output_dir, report_filename(config))

    with open(output_path, "w", newline="", encoding="utf-8") as csvfile:
        csvfile.write(build_csv(prs, config))

    return output_path


def print_summary(prs: List[SlimPullRequest], output_path: str,
                  config: ReportConfig) -> None:
    """
    Display what was saved and the span of merge dates it covers

    Args:
        prs: Pull requests written to the report
        output_path: Path of the written file
        config: Report configuration
    """
    print(f"✓ Saved {len(prs)} pull requests to file:\n\n {output_path}\n")

    if not prs:
        print("⚠ No pull requests were merged in this period")
        return

    earliest = min(pr.merged_at for pr in prs).strftime("%Y-%m-%d")
    latest = max(pr.merged_at for pr in prs).strftime("%Y-%m-%d")

    print("="*60)
    print("SUMMARY")
    print("="*60)
    print(f"Merged PRs:             {len(prs)}")
    print(f"First merge:            {earliest}")
    print(f"Last merge:             {latest}")
    if config.mode is ReportMode.FULL_NAME:
        authors = {pr.author for pr in prs if pr.author}
        print(f"Distinct authors:       {len(authors)}")
    print("="*60 + "\n")


# ============================================================================
# Main Program
# ============================================================================

def generate_report(config: ReportConfig,
                    fetcher: Optional[GitHubPRFetcher] = None) -> Tuple[str, List[SlimPullRequest]]:
    """
    Fetch, filter and export the report for one repository

    Args:
        config: Report configuration
        fetcher: Fetcher to use (defaults to one built from config)

    Returns:
        Tuple of (path of the written CSV, pull requests in the report)

    Raises:
        GitHubAPIError: If any page request fails; nothing is written
    """
    if fetcher is None:
        fetcher = GitHubPRFetcher(config)

    print(
        f"\nGetting pull requests in {config.full_name}\n"
        f"  from {format_instant(config.start_at)} to {format_instant(config.end_at)}.\n"
        f"  Please wait...\n"
    )

    all_prs = fetcher.fetch_merged_pull_requests()
    in_period = filter_to_period(all_prs, config.start_at, config.end_at)
    output_path = export_to_csv(in_period, config)

    print_summary(in_period, output_path, config)
    return output_path, in_period


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the script

    Steps:
    1. Load a .env file, if any, into the environment
    2. Show usage and stop when asked for help
    3. Resolve configuration from environment variables
    4. Fetch, filter and export the report

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Process exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    # Load environment variables from a .env file in the working directory
    load_dotenv(find_dotenv(usecwd=True))

    if any(arg.lower() in HELP_ARGS for arg in argv):
        show_usage()
        return 0

    try:
        config = load_config()
    except ConfigError as e:
        print(f"\n❌ {e}\n", file=sys.stderr)
        show_usage(sys.stderr)
        return 1

    generate_report(config)
    return 0


if __name__ == "__main__":
    sys.exit(main())
