"""GitHub client implementations.

This package provides the client the harness talks to the testbed repository
through, and the two identities it runs as:
- app: the GitHub App installation (bypass actor on the rulesets), used to
  provision rulesets, branches and files
- user: a personal access token, used to open pull requests, enqueue them
  and observe the queue

Use build_clients() to get both clients for a loaded Config.
"""

from mqprobe.config import Config
from mqprobe.github_clients.app_auth import AppAuthError, AppTokenProvider
from mqprobe.github_clients.base import (
    GitHubAPIError,
    GitHubClientBase,
    GitHubGraphQLError,
    GitHubNotFoundError,
    NetworkError,
    static_token,
)
from mqprobe.github_clients.github import GitHubClient


def build_clients(config: Config) -> tuple[GitHubClient, GitHubClient]:
    """Factory function to get the app and user clients for a configuration.

    Args:
        config: Loaded harness configuration

    Returns:
        (app_client, user_client), both bound to the configured testbed
    """
    app_tokens = AppTokenProvider(
        app_id=config.app_id,
        private_key=config.app_private_key,
        installation_id=config.app_installation_id,
        base_url=config.api_url,
    )
    app_client = GitHubClient(
        config.owner, config.repo, app_tokens, api_url=config.api_url, identity="app"
    )
    user_client = GitHubClient(
        config.owner,
        config.repo,
        static_token(config.github_token),
        api_url=config.api_url,
        identity="user",
    )
    return app_client, user_client


__all__ = [
    "AppAuthError",
    "AppTokenProvider",
    "GitHubAPIError",
    "GitHubClient",
    "GitHubClientBase",
    "GitHubGraphQLError",
    "GitHubNotFoundError",
    "NetworkError",
    "build_clients",
    "static_token",
]
