"""Backlog API client.

A thin wrapper around the Backlog REST API (v2) covering the endpoints the
migration needs: projects, issues, comments, wiki pages and issue types.
Requests authenticate with the ``apiKey`` query parameter and go through a
pooled session that retries throttled and failed requests.
"""

from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from backlog_migrate import config
from backlog_migrate.clients.exceptions import (
    ApiError,
    AuthenticationError,
    ClientConnectionError,
    JsonParseError,
    RateLimitError,
    ResourceNotFoundError,
)

logger = config.logger

HTTP_BAD_REQUEST = 400

API_PREFIX = "/api/v2"


def build_session(max_retries: int = 3, backoff_factor: float = 0.5) -> requests.Session:
    """Create a session with connection pooling and a retry policy.

    Args:
        max_retries: Total retries for throttled or failed requests
        backoff_factor: Exponential backoff factor between retries

    Returns:
        Configured session

    """
    session = requests.Session()
    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["HEAD", "GET", "PATCH", "OPTIONS"],
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"User-Agent": "backlog-migrate/1.0", "Accept": "application/json"})
    return session


class BacklogClient:
    """Client for the Backlog REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        page_size: int = 100,
        max_retries: int = 3,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Space URL such as ``https://example.backlog.com``
            api_key: Backlog API key
            timeout: Request timeout in seconds
            page_size: Page size for list endpoints (Backlog allows up to 100)
            max_retries: Retries for throttled or failed requests
            session: Session to use instead of a new pooled session

        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.page_size = page_size
        self.session = session or build_session(max_retries)

    @classmethod
    def from_settings(cls) -> "BacklogClient":
        """Create a client from the configured settings.

        Raises:
            AuthenticationError: If no API key is configured
            ClientConnectionError: If no space or base URL is configured

        """
        settings = config.settings
        if not settings.api_key:
            msg = "Backlog API key is not configured (set BACKLOG_MIGRATE_API_KEY)"
            raise AuthenticationError(msg)
        try:
            base_url = settings.resolved_base_url()
        except ValueError as e:
            raise ClientConnectionError(str(e)) from e
        return cls(
            base_url=base_url,
            api_key=settings.api_key,
            timeout=settings.http_timeout,
            page_size=settings.page_size,
            max_retries=settings.max_retries,
        )

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | list[tuple[str, Any]] | None = None,
        data: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and decode the JSON response.

        Args:
            method: HTTP method
            path: API path below ``/api/v2``
            params: Query parameters
            data: Form encoded body

        Returns:
            Decoded JSON response

        Raises:
            AuthenticationError: On 401 and 403 responses
            ResourceNotFoundError: On 404 responses
            RateLimitError: On 429 responses left after retries
            ApiError: On other error responses
            ClientConnectionError: If the server cannot be reached
            JsonParseError: If the response is not JSON

        """
        url = f"{self.base_url}{API_PREFIX}{path}"
        query: list[tuple[str, Any]] = list(params.items()) if isinstance(params, dict) else list(params or [])
        query.append(("apiKey", self.api_key))

        logger.debug("%s %s", method, path)
        try:
            response = self.session.request(
                method, url, params=query, data=data, timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            msg = f"Request to {path} failed: {e}"
            raise ClientConnectionError(msg) from e

        self._raise_for_status(response, path)

        try:
            return response.json()
        except ValueError as e:
            msg = f"Invalid JSON in response from {path}"
            raise JsonParseError(msg) from e

    def _raise_for_status(self, response: requests.Response, path: str) -> None:
        status = response.status_code
        if status < HTTP_BAD_REQUEST:
            return

        detail = _error_message(response)
        match status:
            case 401 | 403:
                msg = f"Authentication failed for {path}: {detail}"
                raise AuthenticationError(msg)
            case 404:
                msg = f"Resource not found: {path}"
                raise ResourceNotFoundError(msg)
            case 429:
                retry_after = response.headers.get("Retry-After")
                msg = f"Rate limit exceeded for {path}"
                raise RateLimitError(msg, int(retry_after) if retry_after and retry_after.isdigit() else None)
            case _:
                msg = f"HTTP {status} for {path}: {detail}"
                raise ApiError(msg, status_code=status)

    # ---------------------------------------------------------------- projects

    def get_project(self, project_key: str) -> dict[str, Any]:
        return self._request("GET", f"/projects/{project_key}")

    def get_issue_types(self, project_key: str) -> list[dict[str, Any]]:
        return self._request("GET", f"/projects/{project_key}/issueTypes")

    def update_issue_type_template(
        self, project_key: str, issue_type_id: int, template_description: str,
    ) -> dict[str, Any]:
        """Update the description template of an issue type."""
        return self._request(
            "PATCH",
            f"/projects/{project_key}/issueTypes/{issue_type_id}",
            data={"templateDescription": template_description},
        )

    # ------------------------------------------------------------------ issues

    def get_issues(self, project_id: int) -> list[dict[str, Any]]:
        """Fetch every issue of a project, oldest first.

        Args:
            project_id: Numeric project id

        Returns:
            List of issue records

        """
        issues: list[dict[str, Any]] = []
        offset = 0
        while True:
            page = self._request(
                "GET",
                "/issues",
                params=[
                    ("projectId[]", project_id),
                    ("offset", offset),
                    ("count", self.page_size),
                    ("sort", "created"),
                    ("order", "asc"),
                ],
            )
            issues.extend(page)
            if len(page) < self.page_size:
                return issues
            offset += len(page)

    def get_issue(self, issue_key: str) -> dict[str, Any]:
        return self._request("GET", f"/issues/{issue_key}")

    def update_issue_description(self, issue_key: str, description: str) -> dict[str, Any]:
        return self._request("PATCH", f"/issues/{issue_key}", data={"description": description})

    # ---------------------------------------------------------------- comments

    def get_comments(self, issue_key: str) -> list[dict[str, Any]]:
        """Fetch every comment of an issue, oldest first."""
        comments: list[dict[str, Any]] = []
        min_id: int | None = None
        while True:
            params: dict[str, Any] = {"count": self.page_size, "order": "asc"}
            if min_id is not None:
                params["minId"] = min_id
            page = self._request("GET", f"/issues/{issue_key}/comments", params=params)
            comments.extend(page)
            if len(page) < self.page_size:
                return comments
            min_id = int(page[-1]["id"]) + 1

    def get_comment(self, issue_key: str, comment_id: int) -> dict[str, Any]:
        return self._request("GET", f"/issues/{issue_key}/comments/{comment_id}")

    def update_comment(self, issue_key: str, comment_id: int, content: str) -> dict[str, Any]:
        return self._request(
            "PATCH", f"/issues/{issue_key}/comments/{comment_id}", data={"content": content},
        )

    # ------------------------------------------------------------------- wikis

    def get_wikis(self, project_key: str) -> list[dict[str, Any]]:
        return self._request("GET", "/wikis", params={"projectIdOrKey": project_key})

    def get_wiki(self, wiki_id: int) -> dict[str, Any]:
        return self._request("GET", f"/wikis/{wiki_id}")

    def update_wiki_content(self, wiki_id: int, content: str) -> dict[str, Any]:
        return self._request("PATCH", f"/wikis/{wiki_id}", data={"content": content})


def _error_message(response: requests.Response) -> str:
    """Extract the Backlog error message from an error response."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    errors = payload.get("errors") if isinstance(payload, dict) else None
    if errors:
        return "; ".join(str(error.get("message", "")) for error in errors)
    return str(payload)[:200]
