from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, TypeVar

import structlog

from notes_deploy.core import (
    CredentialError,
    PublishFailure,
    RetriesExhausted,
    RetryPolicy,
    TransientError,
    call_with_retries,
)
from notes_deploy.core.config import LATEST_TAG
from notes_deploy.core.retry import Sleeper
from notes_deploy.credentials import CredentialScope
from notes_deploy.stages.build import Artifact

from .registry import RegistryClient

T = TypeVar("T")

log = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PublishResult:
    version_tag: str
    latest_alias_moved: bool
    digest: str
    attempts: int
    uploaded: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "version_tag": self.version_tag,
            "latest_alias_moved": self.latest_alias_moved,
            "digest": self.digest,
            "attempts": self.attempts,
            "uploaded": self.uploaded,
        }


class RegistryPublisher:
    """
    Uploads an artifact under its immutable version tag, verifies it, then
    repoints the mutable `latest` alias.
    """

    def __init__(
        self,
        *,
        registry: RegistryClient,
        policy: RetryPolicy,
        registry_server: str | None = None,
    ) -> None:
        self.registry = registry
        self.policy = policy
        self.registry_server = registry_server

    def publish(
        self,
        artifact: Artifact,
        scope: CredentialScope,
        *,
        sleep: Sleeper = time.sleep,
    ) -> PublishResult:
        if not scope.active:
            raise CredentialError(
                f"publish requires an active credential (handle={scope.handle!r})"
            )

        repo, tag = artifact.repository, artifact.version_tag
        if tag == LATEST_TAG:
            raise PublishFailure("Refusing to publish the alias as a version tag")

        attempts = 0

        def _retry(label: str, fn: Callable[[], T]) -> T:
            nonlocal attempts
            value, n = call_with_retries(
                fn,
                retry_on=(TransientError,),
                policy=self.policy,
                sleep=sleep,
                label=label,
            )
            attempts += n
            return value

        try:
            _retry(
                "login",
                lambda: self.registry.login(
                    username=scope.username,
                    password=scope.secret_value(),
                    registry=self.registry_server,
                ),
            )

            existing = _retry("inspect", lambda: self.registry.remote_digest(repo, tag))
            if existing is not None:
                local = _retry(
                    "inspect-local",
                    lambda: self.registry.local_digest(artifact.local_ref, repo),
                )
                if local != existing:
                    raise PublishFailure(
                        f"{repo}:{tag} is already published with different content "
                        f"({existing}); version tags are immutable"
                    )
                log.info("publish.idempotent", ref=artifact.ref, digest=existing)
                pushed, uploaded = existing, False
            else:
                pushed = _retry(
                    "push", lambda: self.registry.push(artifact.local_ref, repo, tag)
                )
                uploaded = True

            verified = _retry("verify", lambda: self.registry.remote_digest(repo, tag))
            if verified != pushed:
                raise PublishFailure(
                    f"Upload of {repo}:{tag} not verified "
                    f"(pushed {pushed}, registry reports {verified}); latest not moved"
                )

            alias = _retry(
                "alias",
                lambda: self.registry.push(artifact.local_ref, repo, LATEST_TAG),
            )
            if alias != pushed:
                raise PublishFailure(
                    f"{repo}:{LATEST_TAG} resolved to {alias}, expected {pushed}"
                )

            log.info(
                "publish.done",
                ref=artifact.ref,
                digest=pushed,
                uploaded=uploaded,
                attempts=attempts,
            )
            return PublishResult(
                version_tag=tag,
                latest_alias_moved=True,
                digest=pushed,
                attempts=attempts,
                uploaded=uploaded,
            )

        except RetriesExhausted as e:
            raise PublishFailure(
                f"Publishing {artifact.ref} failed after {attempts + e.attempts} "
                f"attempt(s): {e.last_error}",
                attempts=attempts + e.attempts,
            ) from e

        finally:
            scope.revoke()
            try:
                self.registry.logout()
            except Exception as e:
                log.warning("publish.logout_failed", error=str(e))
