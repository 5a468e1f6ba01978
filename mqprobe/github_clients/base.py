"""Base GitHub client with shared transport functionality.

This module provides the base class for GitHub clients: authenticated REST
and GraphQL execution over a requests session, Link-header and cursor
pagination, and the mapping of transport failures onto the harness's error
types.
"""

from collections.abc import Callable
from typing import Any

import requests

from mqprobe.logger import get_logger, log_message

logger = get_logger(__name__)

DEFAULT_API_URL = "https://api.github.com"

TokenProvider = Callable[[], str]


class NetworkError(Exception):
    """Raised when a GitHub API call fails due to network connectivity issues.

    This exception is used to distinguish transient network errors (TLS timeouts,
    connection refused, etc.) from answers the platform actually gave. It is
    never raised for HTTP error statuses.
    """

    pass


class GitHubAPIError(Exception):
    """Raised when the GitHub API answers with an error status.

    Attributes:
        status_code: HTTP status code, or None for GraphQL-level errors
        url: Request URL that failed
    """

    def __init__(self, message: str, status_code: int | None = None, url: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class GitHubNotFoundError(GitHubAPIError):
    """Raised when the requested resource does not exist (HTTP 404)."""

    pass


class GitHubGraphQLError(GitHubAPIError):
    """Raised when a GraphQL response carries an `errors` array.

    Attributes:
        errors: The raw error objects returned by the API
    """

    def __init__(self, errors: list[dict[str, Any]], url: str | None = None):
        messages = [e.get("message", str(e)) for e in errors]
        super().__init__(f"GraphQL errors: {', '.join(messages)}", status_code=None, url=url)
        self.errors = errors


def static_token(token: str) -> TokenProvider:
    """Wrap a fixed personal access token as a token provider."""
    return lambda: token


class GitHubClientBase:
    """Base class for GitHub clients with shared transport functionality.

    One client instance is bound to one repository and one identity (the
    token provider). Instances are passed explicitly to every operation;
    there is no module-level client.
    """

    API_VERSION = "2022-11-28"
    USER_AGENT = "mqprobe"

    def __init__(
        self,
        owner: str,
        repo: str,
        token_provider: TokenProvider,
        *,
        api_url: str = DEFAULT_API_URL,
        session: requests.Session | None = None,
        timeout: float = 30,
        identity: str = "github",
    ) -> None:
        """Initialize the GitHub client.

        Args:
            owner: Repository owner (user or organization)
            repo: Repository name
            token_provider: Callable returning a bearer token for each request
            api_url: REST API base URL (GHES: https://host/api/v3)
            session: Optional requests session (injected by tests)
            timeout: Per-request timeout in seconds
            identity: Short label used in log lines ("app" or "user")
        """
        self.owner = owner
        self.repo = repo
        self.token_provider = token_provider
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.identity = identity
        logger.debug(f"{self.__class__.__name__} initialized for {owner}/{repo} as {identity}")

    @property
    def repo_path(self) -> str:
        """REST path prefix of the bound repository."""
        return f"/repos/{self.owner}/{self.repo}"

    @property
    def graphql_url(self) -> str:
        """GraphQL endpoint matching the REST base URL."""
        if self.api_url.endswith("/v3"):
            # GHES serves GraphQL at /api/graphql next to /api/v3
            return f"{self.api_url[: -len('/v3')]}/graphql"
        return f"{self.api_url}/graphql"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token_provider()}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": self.API_VERSION,
            "User-Agent": self.USER_AGENT,
        }

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> requests.Response:
        """Send one authenticated request and map failures to exceptions.

        Args:
            method: HTTP method
            path: REST path (joined to api_url) or an absolute URL
            params: Optional query parameters
            json_body: Optional JSON request body

        Returns:
            The successful response

        Raises:
            NetworkError: On connection failures, timeouts and broken responses
            GitHubNotFoundError: On HTTP 404
            GitHubAPIError: On any other HTTP error status
        """
        url = path if path.startswith("http") else f"{self.api_url}{path}"
        logger.debug(f"{self.identity}: {method} {url}")

        try:
            response = self.session.request(
                method,
                url,
                headers=self._headers(),
                params=params,
                json=json_body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NetworkError(f"GitHub API network error: {e}") from e

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.debug(f"{self.identity}: {method} {url} failed ({response.status_code}): {message}")
            if response.status_code == 404:
                raise GitHubNotFoundError(message, status_code=404, url=url)
            raise GitHubAPIError(message, status_code=response.status_code, url=url)

        return response

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        """Extract the API's error message, falling back to the raw body."""
        try:
            payload = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
        return response.text or f"HTTP {response.status_code}"

    def _rest_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """Send a REST request and decode the JSON body (None when empty)."""
        response = self._request(method, path, params=params, json_body=json_body)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _paginate(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        item_key: str | None = None,
    ) -> list[Any]:
        """Fetch every page of a REST listing by following Link rel="next".

        Args:
            path: REST path of the first page
            params: Query parameters for the first page (per_page defaults to 100)
            item_key: Key holding the items when pages are objects
                (e.g. "workflow_runs"); None when pages are plain lists

        Returns:
            All items across pages, in API order
        """
        items: list[Any] = []
        url: str | None = path
        page_params: dict[str, Any] | None = {"per_page": 100, **(params or {})}
        pages = 0

        while url:
            response = self._request("GET", url, params=page_params)
            payload = response.json()
            page_items = payload.get(item_key, []) if item_key else payload
            if not isinstance(page_items, list):
                raise GitHubAPIError(f"Unexpected GitHub response: expected list at {url}")
            items.extend(page_items)
            pages += 1
            # The next link already carries the query string
            url = response.links.get("next", {}).get("url")
            page_params = None

        logger.debug(f"{self.identity}: fetched {len(items)} items from {path} in {pages} page(s)")
        return items

    def _execute_graphql_query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Execute a GraphQL query or mutation.

        Args:
            query: GraphQL document
            variables: Variables to pass to the query

        Returns:
            The full response object (with "data")

        Raises:
            GitHubGraphQLError: If the response carries errors
        """
        log_message(logger, "GraphQL query", query)
        response = self._request(
            "POST", self.graphql_url, json_body={"query": query, "variables": variables}
        )
        try:
            payload = response.json()
        except ValueError as e:
            raise GitHubAPIError(
                f"Invalid JSON response from GraphQL endpoint: {e}", url=self.graphql_url
            ) from e

        if payload.get("errors"):
            raise GitHubGraphQLError(payload["errors"], url=self.graphql_url)

        return payload

    def _paginate_graphql(
        self,
        query: str,
        variables: dict[str, Any],
        connection_path: tuple[str, ...],
    ) -> list[dict[str, Any]]:
        """Collect the nodes of a cursor-paginated GraphQL connection.

        The query must accept a `$cursor: String` variable and select
        `nodes` and `pageInfo { endCursor hasNextPage }` on the connection.

        Args:
            query: GraphQL document
            variables: Variables other than the cursor
            connection_path: Keys under "data" leading to the connection

        Returns:
            All nodes; empty when any object along the path is null

        Raises:
            GitHubAPIError: If a next page is reported without a cursor
        """
        nodes: list[dict[str, Any]] = []
        cursor: str | None = None

        while True:
            response = self._execute_graphql_query(query, {**variables, "cursor": cursor})
            connection: Any = response.get("data")
            for key in connection_path:
                connection = connection.get(key) if isinstance(connection, dict) else None
            if connection is None:
                return nodes

            nodes.extend(connection.get("nodes") or [])
            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return nodes
            cursor = page_info.get("endCursor")
            if not cursor:
                raise GitHubAPIError(
                    "GraphQL connection reported another page without an end cursor",
                    url=self.graphql_url,
                )

    def validate_connection(self) -> bool:
        """Validate that the identity can read the bound repository.

        Returns:
            True if the repository is readable

        Raises:
            RuntimeError: If authentication or access fails
        """
        try:
            payload = self._rest_json("GET", self.repo_path)
        except GitHubAPIError as e:
            raise RuntimeError(
                f"GitHub access check failed for {self.owner}/{self.repo} as {self.identity}: {e}"
            ) from e
        logger.info(f"GitHub access confirmed for {payload.get('full_name')} as {self.identity}")
        return True
