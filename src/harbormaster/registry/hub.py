"""Docker Hub API client.

Wraps the subset of the Hub v2 API used to manage published images:
JWT login, tag listing and deletion, repository statistics and deletion.

See https://docs.docker.com/docker-hub/api/latest/
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from harbormaster.core.constants import DOCKER_HUB_REGISTRY
from harbormaster.core.errors import ReadinessTimeout, RegistryError
from harbormaster.core.schemas import HubConfig, RepositoryStats
from harbormaster.runners.executor import CommandExecutor

logger = logging.getLogger(__name__)

DELETE_TAG_TIMEOUT_MS = 30000
DELETE_TAG_POLL_MS = 2000
DELETE_REPOSITORY_TIMEOUT_MS = 5 * 60 * 1000
DELETE_REPOSITORY_POLL_MS = 15000


class HubClient:
    """Async Docker Hub client.

    Example:
        ```python
        async with HubClient(config.hub) as hub:
            tags = await hub.get_tags("my-app")
        ```
    """

    def __init__(
        self,
        config: HubConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Credentials and base URL
            transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
        """
        self.config = config
        self._client = httpx.AsyncClient(base_url=config.base_url, transport=transport)
        self._token: str | None = None

    async def __aenter__(self) -> HubClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def get_namespace(self) -> str:
        return self.config.namespace

    async def authenticate(self) -> str:
        """Log in and keep the returned JWT for later calls.

        Raises:
            RegistryError: If login fails or no token is returned
        """
        logger.debug(f"Authenticating to {self.config.base_url} as {self.config.username}")
        response = await self._client.post(
            "/v2/users/login",
            json={
                "username": self.config.username,
                "password": self.config.password.get_secret_value(),
            },
        )
        if response.is_error:
            raise RegistryError(
                f"Docker Hub authentication failed: {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        token = response.json().get("token")
        if not token:
            raise RegistryError("Docker Hub authentication failed: No token received")
        self._token = token
        return token

    async def ensure_authenticated(self) -> str:
        if self._token is None:
            return await self.authenticate()
        return self._token

    async def api_call(
        self,
        method: str,
        path: str,
        *,
        require_auth: bool = True,
        body: Any = None,
    ) -> Any:
        """Call the Hub API and return the decoded JSON body.

        ``DELETE`` calls return ``{}``.

        Raises:
            RegistryError: On a non-2xx response
        """
        headers = {}
        token = await self.ensure_authenticated() if require_auth else self._token
        if token:
            headers["Authorization"] = f"JWT {token}"

        logger.debug(f"Hub API: {method} {path}")
        response = await self._client.request(method, path, headers=headers, json=body)
        if response.is_error:
            raise RegistryError(
                f"API call failed: {method} {path} - {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        if method.upper() == "DELETE":
            return {}
        return response.json()

    async def get_tags(self, repository: str, namespace: str | None = None) -> list[str]:
        namespace = namespace or self.get_namespace()
        data = await self.api_call(
            "GET", f"/v2/repositories/{namespace}/{repository}/tags/?page_size=100"
        )
        return [result["name"] for result in data.get("results") or []]

    async def ensure_tagged(self, repository: str, tag: str, namespace: str | None = None) -> str:
        """Return ``tag`` if it is published, otherwise raise RegistryError."""
        tags = await self.get_tags(repository, namespace)
        if tag not in tags:
            raise RegistryError(f"Tag {tag} not found in repository")
        return tag

    async def get_stats(self, repository: str, namespace: str | None = None) -> RepositoryStats:
        namespace = namespace or self.get_namespace()
        data = await self.api_call(
            "GET", f"/v2/repositories/{namespace}/{repository}/", require_auth=False
        )
        return RepositoryStats(
            name=data.get("name"),
            namespace=data.get("namespace"),
            pull_count=data.get("pull_count") or 0,
            star_count=data.get("star_count") or 0,
            description=data.get("description") or "",
            is_private=data.get("is_private") or False,
            last_updated=data.get("last_updated"),
        )

    async def delete_tag(
        self,
        repository: str,
        tag: str,
        namespace: str | None = None,
        *,
        timeout_ms: int = DELETE_TAG_TIMEOUT_MS,
        poll_interval_ms: int = DELETE_TAG_POLL_MS,
    ) -> None:
        """Delete ``tag`` and wait until the Hub no longer lists it.

        Raises:
            RegistryError: If the token may not delete tags
            ReadinessTimeout: If the tag is still listed after ``timeout_ms``
        """
        namespace = namespace or self.get_namespace()
        logger.info(f"Deleting tag {namespace}/{repository}:{tag}")
        try:
            await self.api_call("DELETE", f"/v2/repositories/{namespace}/{repository}/tags/{tag}/")
        except RegistryError as e:
            if e.status_code == 403:
                raise RegistryError(
                    "Tag deletion not permitted: token lacks delete permissions",
                    status_code=e.status_code,
                    body=e.body,
                ) from e
            raise

        deadline = time.monotonic() + timeout_ms / 1000
        while time.monotonic() < deadline:
            if tag not in await self.get_tags(repository, namespace):
                logger.info(f"Tag {tag} deleted")
                return
            await asyncio.sleep(poll_interval_ms / 1000)
        raise ReadinessTimeout(f"Tag deletion verification timed out after {timeout_ms}ms")

    async def delete_repository(
        self,
        repository: str,
        namespace: str | None = None,
        *,
        wait: bool = False,
        timeout_ms: int = DELETE_REPOSITORY_TIMEOUT_MS,
        poll_interval_ms: int = DELETE_REPOSITORY_POLL_MS,
    ) -> None:
        """Delete a repository, optionally waiting until it reports 404."""
        namespace = namespace or self.get_namespace()
        logger.info(f"Deleting repository {namespace}/{repository}")
        await self.api_call("DELETE", f"/v2/repositories/{namespace}/{repository}/")
        if not wait:
            return

        deadline = time.monotonic() + timeout_ms / 1000
        while time.monotonic() < deadline:
            try:
                await self.get_stats(repository, namespace)
            except RegistryError as e:
                if e.status_code == 404:
                    logger.info(f"Repository {namespace}/{repository} deletion confirmed")
                    return
                logger.debug(f"Polling deleted repository failed: {e}")
            await asyncio.sleep(poll_interval_ms / 1000)
        raise ReadinessTimeout(f"Timeout waiting for repository deletion after {timeout_ms}ms")

    async def login_cli(self, executor: CommandExecutor) -> str:
        """Log the engine CLI in to the Hub registry, piping the password on stdin."""
        logger.info(f"Logging in to {DOCKER_HUB_REGISTRY} as {self.config.username}")
        return await executor.execute(
            ["login", "-u", self.config.username, "--password-stdin", DOCKER_HUB_REGISTRY],
            stdin=self.config.password.get_secret_value(),
        )
