"""
Repository access: the local checkout and the remote branch head.

``GitRepositorySource`` clones and inspects checkouts under the data
directory with GitPython. ``GitHubRemoteRef`` asks the GitHub REST API which
commit a branch currently points to. Both raise the ``SyncError`` family so
callers can decide what to retry.
"""

import logging
import shutil
from pathlib import Path
from typing import Optional, Protocol

import httpx
from git import Repo
from git.exc import GitCommandError, GitError, InvalidGitRepositoryError, NoSuchPathError

from .config import settings
from .errors import (
    ApiError,
    CheckoutMissingError,
    CleanupError,
    NetworkError,
    NotFoundError,
    SyncError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

CommitId = str

USER_AGENT = "mittorch"

# Substrings of git's stderr that identify the failure kind
AUTH_MARKERS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "permission denied",
    "403",
)
NOT_FOUND_MARKERS = ("not found", "does not exist", "remote branch")


def short_sha(sha: CommitId) -> str:
    """First 8 characters of a commit id, for display."""
    return sha[:8]


def normalize_token(token: Optional[str]) -> Optional[str]:
    """Strip a token; blank tokens count as no token."""
    if token is None:
        return None
    token = token.strip()
    return token or None


class RepositorySource(Protocol):
    def ensure_clone(self, account: str, repository: str, branch: str, token: Optional[str]) -> None: ...

    def local_head(self, path: Path) -> CommitId: ...

    def remove_checkout(self, path: Path) -> None: ...


class RemoteRef(Protocol):
    def remote_head(self, account: str, repository: str, branch: str, token: Optional[str]) -> CommitId: ...


class GitRepositorySource:
    """Clones and reads checkouts stored under ``data_dir/<repository>``."""

    def __init__(self, data_dir: Path = None, host: str = None):
        self.data_dir = Path(data_dir or settings.data_dir)
        self.host = host or settings.git_host

    def checkout_path(self, repository: str) -> Path:
        return self.data_dir / repository

    def clone_url(self, account: str, repository: str, token: Optional[str] = None) -> str:
        token = normalize_token(token)
        if token:
            return f"https://{token}@{self.host}/{account}/{repository}.git"
        return f"https://{self.host}/{account}/{repository}.git"

    def ensure_clone(self, account: str, repository: str, branch: str, token: Optional[str] = None):
        """Remove any existing checkout and clone the branch fresh."""
        token = normalize_token(token)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        path = self.checkout_path(repository)

        if path.exists():
            logger.warning(f"Removing existing directory {path}")
            self.remove_checkout(path)

        logger.info(f"Cloning {self.clone_url(account, repository)} (branch: {branch})")
        try:
            with Repo.clone_from(
                self.clone_url(account, repository, token),
                path,
                branch=branch,
                env={"GIT_TERMINAL_PROMPT": "0"},  # Fail instead of prompting for credentials
            ):
                pass
        except GitError as e:
            # Never leave a half-written checkout behind
            shutil.rmtree(path, ignore_errors=True)
            raise self._classify_clone_error(e, repository, token) from e

        logger.info(f"Repository {account}/{repository} ready at {path}")

    def _classify_clone_error(self, error: GitError, repository: str, token: Optional[str]) -> SyncError:
        """Map a git failure to a SyncError subclass.

        With prompts disabled, GitHub answers an anonymous clone of a missing
        repository exactly like one of a private repository ("could not read
        Username"), so without a token both come back as UnauthorizedError.
        Only the REST lookup in GitHubRemoteRef can tell the two apart.
        """
        stderr = error.stderr if isinstance(error, GitCommandError) else ""
        message = (str(stderr or "").strip() or str(error))
        if token:
            message = message.replace(token, "***")
        lower = message.lower()

        if any(marker in lower for marker in AUTH_MARKERS):
            if token:
                scope = "private repository, check token permissions"
            else:
                scope = "private or missing repository, no token configured"
            return UnauthorizedError(f"Failed to clone {repository} ({scope}): {message}")
        if any(marker in lower for marker in NOT_FOUND_MARKERS):
            return NotFoundError(f"Failed to clone {repository} (not found): {message}")
        return NetworkError(f"Failed to clone {repository}: {message}")

    def local_head(self, path: Path) -> CommitId:
        """HEAD commit of the checkout, or "" if HEAD does not resolve."""
        try:
            repo = Repo(path)
        except (NoSuchPathError, InvalidGitRepositoryError) as e:
            raise CheckoutMissingError(f"No git repository at {path}") from e

        with repo:
            try:
                return repo.head.commit.hexsha
            except ValueError:
                # Unborn or detached-to-nothing HEAD
                return ""

    def remove_checkout(self, path: Path):
        """Delete a checkout directory. Missing directories are fine."""
        path = Path(path)
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise CleanupError(f"Failed to remove {path}: {e}") from e


class GitHubRemoteRef:
    """Resolves branch heads through the GitHub REST API."""

    def __init__(self, api_url: str = None, timeout: float = None, client: httpx.Client = None):
        self.api_url = (api_url or settings.api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.http_timeout
        self._client = client

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None

    def remote_head(self, account: str, repository: str, branch: str, token: Optional[str] = None) -> CommitId:
        """Commit SHA the branch points to, or "" if the response carries none."""
        url = f"{self.api_url}/repos/{account}/{repository}/branches/{branch}"
        headers = {"User-Agent": USER_AGENT, "Accept": "application/vnd.github+json"}
        token = normalize_token(token)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = self._get_client().get(url, headers=headers)
        except httpx.HTTPError as e:
            raise NetworkError(f"Could not reach {self.api_url}: {e}") from e

        if response.status_code == 401:
            raise UnauthorizedError("unauthorized: invalid or missing token")
        if response.status_code == 404:
            raise NotFoundError(f"{account}/{repository} branch {branch} not found (check visibility and account)")
        if not response.is_success:
            raise ApiError(f"GitHub API error: {response.status_code} {response.reason_phrase}")

        try:
            payload = response.json()
        except ValueError as e:
            raise ApiError(f"GitHub API returned an invalid body: {e}") from e

        commit = payload.get("commit") if isinstance(payload, dict) else None
        sha = commit.get("sha") if isinstance(commit, dict) else None
        return sha if isinstance(sha, str) else ""
