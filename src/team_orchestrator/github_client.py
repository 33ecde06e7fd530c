"""GitHub issue tracker - areas are `area:<name>` labels, tickets are open issues."""

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from github import Auth, Github
from github.GithubException import GithubException, RateLimitExceededException
from github.Issue import Issue
from github.Repository import Repository

from .config import Config, load_repo_settings
from .errors import ConfigurationError, OrchestratorError

logger = logging.getLogger(__name__)

AREA_LABEL_PREFIX = "area:"
RATE_LIMIT_RETRY_DELAY = 60  # seconds
RATE_LIMIT_MAX_RETRIES = 3

HTTPS_URL_RE = re.compile(r"github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$")
SSH_URL_RE = re.compile(r"github\.com:([^/]+)/([^/]+?)(?:\.git)?$")

T = TypeVar("T")


@dataclass
class GitHubIssue:
	"""Structured issue data."""
	number: int
	title: str
	state: str
	body: Optional[str]
	labels: list[str]
	created_at: str
	updated_at: str
	url: str


@dataclass
class AreaTickets:
	"""Open ticket numbers for one area."""
	area: str
	tickets: list[int]


def parse_repo_url(repo_url: str) -> tuple[str, str]:
	"""
	Split a GitHub URL into (owner, repo).

	Accepts https://github.com/owner/repo(.git) and git@github.com:owner/repo(.git).

	Raises:
		ConfigurationError: Not a GitHub repository URL
	"""
	url = repo_url.strip()
	for pattern in (HTTPS_URL_RE, SSH_URL_RE):
		match = pattern.search(url)
		if match:
			return match.group(1), match.group(2)
	raise ConfigurationError(f"Invalid GitHub repository URL: {repo_url}")


def _is_rate_limited(error: GithubException) -> bool:
	if isinstance(error, RateLimitExceededException):
		return True
	if error.status == 429:
		return True
	return error.status == 403 and "rate limit" in str(error).lower()


def _to_issue(issue: Issue) -> GitHubIssue:
	return GitHubIssue(
		number=issue.number,
		title=issue.title,
		state=issue.state,
		body=issue.body,
		labels=[label.name for label in issue.labels],
		created_at=issue.created_at.isoformat() if issue.created_at else "",
		updated_at=issue.updated_at.isoformat() if issue.updated_at else "",
		url=issue.html_url,
	)


class IssueTracker:
	"""
	Reads areas and tickets from one GitHub repository.

	Usage:
		tracker = IssueTracker.from_config(config)
		for item in tracker.area_tickets():
			print(item.area, item.tickets)
	"""

	def __init__(
		self,
		repo_url: str,
		token: Optional[str] = None,
		github: Optional[Github] = None,
		sleep: Callable[[float], None] = time.sleep,
	):
		self.owner, self.repo_name = parse_repo_url(repo_url)
		self._token = token
		self._github = github
		self._repo: Optional[Repository] = None
		self._sleep = sleep

	@classmethod
	def from_config(cls, config: Config) -> "IssueTracker":
		"""
		Build a tracker from the settings written by `init`.

		Raises:
			ConfigurationError: The project has not been initialized
		"""
		settings = load_repo_settings(config)
		if settings is None:
			raise ConfigurationError(
				"Orchestrator not initialized. Run: team-orchestrator init <repo-url> --token <token>"
			)
		return cls(settings.repo_url, token=settings.resolved_token())

	@property
	def full_name(self) -> str:
		return f"{self.owner}/{self.repo_name}"

	def _get_github(self) -> Github:
		if self._github is None:
			if not self._token:
				raise ConfigurationError(
					"GitHub token not configured. Pass --token to init or set GITHUB_TOKEN."
				)
			self._github = Github(auth=Auth.Token(self._token))
		return self._github

	def _get_repo(self) -> Repository:
		if self._repo is None:
			self._repo = self._with_retry(
				lambda: self._get_github().get_repo(self.full_name),
				"get_repo",
			)
		return self._repo

	def _with_retry(self, operation: Callable[[], T], name: str) -> T:
		"""Run a GitHub call, waiting out rate limits up to RATE_LIMIT_MAX_RETRIES times."""
		last_error: Optional[GithubException] = None
		for attempt in range(1, RATE_LIMIT_MAX_RETRIES + 1):
			try:
				return operation()
			except GithubException as e:
				if not _is_rate_limited(e):
					raise OrchestratorError(f"GitHub {name} failed: {e}") from e
				last_error = e
				logger.warning(
					f"Rate limit hit during {name}. Attempt {attempt}/{RATE_LIMIT_MAX_RETRIES}. "
					f"Waiting {RATE_LIMIT_RETRY_DELAY}s..."
				)
				self._sleep(RATE_LIMIT_RETRY_DELAY)

		raise OrchestratorError(
			f"GitHub {name} failed after {RATE_LIMIT_MAX_RETRIES} rate limit retries: {last_error}"
		)

	def list_areas(self) -> list[str]:
		"""Area names (labels with the `area:` prefix, prefix removed)."""
		repo = self._get_repo()
		names = self._with_retry(
			lambda: [label.name for label in repo.get_labels()],
			"list_areas",
		)
		return [
			name[len(AREA_LABEL_PREFIX):]
			for name in names
			if name.startswith(AREA_LABEL_PREFIX)
		]

	def get_issues_by_area(self, area: str, state: str = "open") -> list[GitHubIssue]:
		"""Issues labelled with the area. Pull requests are excluded."""
		repo = self._get_repo()
		label = f"{AREA_LABEL_PREFIX}{area}"
		return self._with_retry(
			lambda: [
				_to_issue(issue)
				for issue in repo.get_issues(state=state, labels=[label])
				if issue.pull_request is None
			],
			"get_issues_by_area",
		)

	def list_open_issues_for_area(self, area: str) -> list[GitHubIssue]:
		return self.get_issues_by_area(area, state="open")

	def get_issue(self, number: int) -> GitHubIssue:
		repo = self._get_repo()
		return self._with_retry(lambda: _to_issue(repo.get_issue(number)), "get_issue")

	def create_issue(self, title: str, body: str, area: str) -> int:
		"""Open an issue in an area. Returns its number."""
		repo = self._get_repo()
		issue = self._with_retry(
			lambda: repo.create_issue(
				title=title,
				body=body,
				labels=[f"{AREA_LABEL_PREFIX}{area}"],
			),
			"create_issue",
		)
		logger.info(f"Created issue #{issue.number} in area {area}")
		return issue.number

	def close_issue(self, number: int) -> None:
		repo = self._get_repo()
		self._with_retry(lambda: repo.get_issue(number).edit(state="closed"), "close_issue")
		logger.info(f"Closed issue #{number}")

	def area_tickets(self) -> list[AreaTickets]:
		"""Every area with at least one open issue, tickets in ascending order."""
		result = []
		for area in self.list_areas():
			numbers = sorted(issue.number for issue in self.list_open_issues_for_area(area))
			if numbers:
				result.append(AreaTickets(area=area, tickets=numbers))
			else:
				logger.debug(f"Area {area} has no open issues, skipping")
		return result
