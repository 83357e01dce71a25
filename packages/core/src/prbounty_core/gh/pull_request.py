from __future__ import annotations

import logging

import requests
from github import Auth, Github, GithubException

from prbounty_core.errors import UpstreamError

logger = logging.getLogger(__name__)


def get_repo(repo_name: str, token: str | None, timeout: int = 20):
    auth = Auth.Token(token) if token else None
    return Github(auth=auth, timeout=timeout).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def _author(item) -> str:
    user = getattr(item, "user", None)
    return getattr(user, "login", "") or ""


def find_bot_content(pr, bot_login: str) -> str | None:
    """Return the bot's review text for a PR, or None if the bot has not posted yet.

    A dedicated PR review from the bot wins over issue comments; within each
    kind the most recent non-empty body is used.
    """
    review_body = None
    for review in pr.get_reviews():
        if _author(review) == bot_login and (review.body or "").strip():
            review_body = review.body
    if review_body:
        return review_body

    comment_body = None
    for comment in pr.get_issue_comments():
        if _author(comment) == bot_login and (comment.body or "").strip():
            comment_body = comment.body
    return comment_body


class GitHubSource:
    """Read-only view of PR comments and reviews, translating library errors to UpstreamError."""

    def __init__(self, token: str | None, timeout: int = 20):
        self._token = token
        self._timeout = timeout

    def fetch_bot_content(self, owner: str, repo: str, pr_number: int, bot_login: str) -> str | None:
        try:
            pr = get_pull(get_repo(f"{owner}/{repo}", self._token, self._timeout), pr_number)
            return find_bot_content(pr, bot_login)
        except GithubException as e:
            logger.error("GitHub API error for %s/%s#%d: %s", owner, repo, pr_number, e)
            raise UpstreamError(f"GitHub API error ({e.status}) while fetching comments.") from e
        except requests.RequestException as e:
            logger.error("GitHub request failed for %s/%s#%d: %s", owner, repo, pr_number, e)
            raise UpstreamError(f"GitHub request failed: {type(e).__name__}") from e
