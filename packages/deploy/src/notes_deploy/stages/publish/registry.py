from __future__ import annotations

from typing import Callable, Protocol, TypeVar

import docker
import requests
import structlog

from notes_deploy.core import PublishFailure, TransientError

T = TypeVar("T")

_RETRYABLE_STATUSES: set[int] = {408, 429, 500, 502, 503, 504}

log = structlog.get_logger(__name__)


class RegistryClient(Protocol):
    """
    The slice of an artifact registry the publisher needs.

    Digests are registry content addresses (manifest digests); two tags
    reference the same content when their digests are equal.
    """

    def login(
        self, *, username: str, password: str, registry: str | None
    ) -> None: ...

    def logout(self) -> None: ...

    def remote_digest(self, repository: str, tag: str) -> str | None:
        """Digest behind repository:tag, or None if the tag does not exist."""
        ...

    def local_digest(self, local_ref: str, repository: str) -> str | None:
        """Digest the local image already has in `repository`, if pushed before."""
        ...

    def push(self, local_ref: str, repository: str, tag: str) -> str:
        """Tag the local image as repository:tag, upload, return the remote digest."""
        ...


def is_retryable_status(code: int | None) -> bool:
    return code is None or code in _RETRYABLE_STATUSES


class DockerRegistryClient:
    """RegistryClient over the docker SDK."""

    def __init__(self, client: docker.DockerClient | None = None) -> None:
        self._client = client
        self._auth: dict[str, str] | None = None

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def _call(self, what: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except docker.errors.APIError as e:
            code = e.status_code
            if code in (401, 403):
                raise PublishFailure(
                    f"{what}: registry rejected credentials ({code})"
                ) from e
            if is_retryable_status(code):
                raise TransientError(f"{what}: registry error {code}: {e}") from e
            raise PublishFailure(f"{what}: registry error {code}: {e}") from e
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise TransientError(f"{what}: {e}") from e

    def login(self, *, username: str, password: str, registry: str | None) -> None:
        self._call(
            "login",
            lambda: self.client.login(
                username=username, password=password, registry=registry, reauth=True
            ),
        )
        self._auth = {"username": username, "password": password}

    def logout(self) -> None:
        # Closing the client drops any auth the SDK cached at login.
        self._auth = None
        if self._client is not None:
            self._client.close()
            self._client = None

    def remote_digest(self, repository: str, tag: str) -> str | None:
        ref = f"{repository}:{tag}"

        def _lookup() -> str | None:
            try:
                data = self.client.images.get_registry_data(
                    ref, auth_config=self._auth
                )
            except docker.errors.NotFound:
                return None
            return str(data.id)

        return self._call(f"inspect {ref}", _lookup)

    def local_digest(self, local_ref: str, repository: str) -> str | None:
        def _lookup() -> str | None:
            try:
                image = self.client.images.get(local_ref)
            except docker.errors.ImageNotFound:
                return None
            for repo_digest in image.attrs.get("RepoDigests") or []:
                name, _, digest = str(repo_digest).partition("@")
                if name == repository and digest:
                    return digest
            return None

        return self._call(f"inspect {local_ref}", _lookup)

    def push(self, local_ref: str, repository: str, tag: str) -> str:
        ref = f"{repository}:{tag}"

        def _push() -> str:
            image = self.client.images.get(local_ref)
            image.tag(repository, tag=tag)
            digest: str | None = None
            for line in self.client.images.push(
                repository, tag=tag, stream=True, decode=True, auth_config=self._auth
            ):
                if "error" in line:
                    message = str(line["error"])
                    if any(w in message.lower() for w in ("denied", "unauthorized")):
                        raise PublishFailure(f"push {ref}: {message}")
                    raise TransientError(f"push {ref}: {message}")
                aux = line.get("aux") or {}
                if aux.get("Digest"):
                    digest = str(aux["Digest"])
            if digest is None:
                raise PublishFailure(f"push {ref}: registry did not report a digest")
            log.debug("registry.push", ref=ref, digest=digest)
            return digest

        return self._call(f"push {ref}", _push)
