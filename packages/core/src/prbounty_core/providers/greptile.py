from __future__ import annotations

import logging

import httpx

from prbounty_core.errors import UpstreamError
from prbounty_core.providers.base import BaseReviewService

logger = logging.getLogger(__name__)

_PROMPT = """Review the changes in pull request #{pr_number} of {owner}/{repo}.

Structure the answer as:
## Summary
A short overview of what the pull request changes.

## Important Files Changed
| Filename | Score | Overview |
One row per changed file, scored out of 5.

Confidence score: N/5
where N reflects how safe the pull request is to merge."""


class GreptileReviewService(BaseReviewService):
    DEFAULT_URL = "https://api.greptile.com/v2"

    def __init__(
        self,
        api_key: str,
        github_token: str | None = None,
        base_url: str = DEFAULT_URL,
        branch: str = "main",
        timeout: float = 20,
        cache=None,
        http_client: httpx.Client | None = None,
    ):
        super().__init__(cache=cache)
        if not api_key:
            raise ValueError("A Greptile API key is required.")
        self._branch = branch
        self._client = http_client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "X-Github-Token": github_token or "",
        }

    @staticmethod
    def reference_for(owner: str, repo: str, pr_number: int) -> str:
        return f"greptile-pr-{owner}-{repo}-{pr_number}"

    def _submit(self, owner: str, repo: str, pr_number: int) -> tuple[str, str | None]:
        session_id = self.reference_for(owner, repo, pr_number)
        body = {
            "messages": [
                {"role": "user", "content": _PROMPT.format(owner=owner, repo=repo, pr_number=pr_number)},
            ],
            "repositories": [{"remote": "github", "repository": f"{owner}/{repo}", "branch": self._branch}],
            "sessionId": session_id,
            "genius": False,
        }
        data = self._request("POST", "/query", json=body)
        return session_id, (data or {}).get("message") or None

    def _fetch(self, reference: str) -> str | None:
        data = self._request("GET", f"/query/{reference}", allow_missing=True)
        if not data:
            return None
        return data.get("message") or data.get("response") or None

    def _request(self, method: str, path: str, allow_missing: bool = False, **kwargs) -> dict | None:
        try:
            response = self._client.request(method, path, headers=self._headers, **kwargs)
            if allow_missing and response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Greptile %s %s returned %d", method, path, e.response.status_code)
            raise UpstreamError(f"Review service returned HTTP {e.response.status_code}.") from e
        except httpx.HTTPError as e:
            logger.error("Greptile %s %s failed: %s", method, path, e)
            raise UpstreamError(f"Review service request failed: {type(e).__name__}") from e
        except ValueError as e:
            raise UpstreamError("Review service returned a non-JSON response.") from e

    def close(self) -> None:
        self._client.close()
