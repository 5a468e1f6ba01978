"""GitHub App installation token provider.

The automation identity (ruleset writes, branch and file provisioning)
authenticates as a GitHub App installation. Installation tokens are minted
through PyGithub's GithubIntegration and live for one hour.
"""

import threading
import time
from dataclasses import dataclass

from github import Auth, GithubException, GithubIntegration

from mqprobe.github_clients.base import DEFAULT_API_URL
from mqprobe.logger import get_logger

logger = get_logger(__name__)

# Refresh buffer: proactively refresh tokens 5 minutes before expiry
EXPIRY_BUFFER_SECONDS = 300


class AppAuthError(Exception):
    """Error minting a GitHub App installation token."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class InstallationToken:
    """A minted installation token."""

    token: str
    expires_at: float  # Unix timestamp when token expires


class AppTokenProvider:
    """Token provider for a GitHub App installation.

    Instances are callables returning a bearer token, so they can be handed
    to a GitHub client as its token provider.

    Thread-safe: concurrent scenarios share one provider and the cached token.
    """

    def __init__(
        self,
        app_id: int,
        private_key: str,
        installation_id: int,
        base_url: str = DEFAULT_API_URL,
        integration: GithubIntegration | None = None,
    ):
        """Initialize the token provider.

        Args:
            app_id: GitHub App id
            private_key: PEM private key of the app
            installation_id: Installation id of the app on the testbed owner
            base_url: REST API base URL
            integration: Optional pre-built GithubIntegration (injected by tests)
        """
        self.app_id = app_id
        self.installation_id = installation_id
        self._integration = integration or GithubIntegration(
            auth=Auth.AppAuth(app_id, private_key), base_url=base_url
        )
        self._token: InstallationToken | None = None
        self._lock = threading.Lock()

    def __call__(self) -> str:
        return self.get_token()

    def get_token(self) -> str:
        """Get a valid installation token, minting a new one if needed.

        Raises:
            AppAuthError: If the token request fails.
        """
        with self._lock:
            if self._is_token_valid() and self._token is not None:
                return self._token.token

            logger.debug(f"Refreshing installation token for app {self.app_id}")
            self._token = self._request_token()
            return self._token.token

    def _is_token_valid(self) -> bool:
        if self._token is None:
            return False
        return self._token.expires_at - time.time() > EXPIRY_BUFFER_SECONDS

    def _request_token(self) -> InstallationToken:
        try:
            authorization = self._integration.get_access_token(self.installation_id)
        except GithubException as e:
            # Log without the response body, which may echo credentials
            logger.error(
                f"Installation token request failed for app {self.app_id}: status {e.status}"
            )
            raise AppAuthError(
                f"Installation token request failed: HTTP {e.status}", status_code=e.status
            ) from e

        expires_at = authorization.expires_at.timestamp()
        logger.info(
            f"Installation token acquired for app {self.app_id}, "
            f"expires in {int(expires_at - time.time())} seconds"
        )
        return InstallationToken(token=authorization.token, expires_at=expires_at)
