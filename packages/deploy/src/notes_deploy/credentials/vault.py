from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Mapping

import structlog
from pydantic import SecretStr

from notes_deploy.core import CredentialError, utc_now_iso

log = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Credential:
    username: str
    secret: SecretStr


@dataclass(slots=True)
class CredentialScope:
    """
    A secret granted to exactly one stage. Unusable once revoked.
    """

    grant_id: int
    handle: str
    stage: str
    username: str
    granted_at_utc: str
    _secret: SecretStr = field(repr=False)
    _on_revoke: Callable[["CredentialScope"], None] = field(repr=False)
    revoked_at_utc: str | None = None

    @property
    def revoked(self) -> bool:
        return self.revoked_at_utc is not None

    @property
    def active(self) -> bool:
        return not self.revoked

    def secret_value(self) -> str:
        if self.revoked:
            raise CredentialError(
                f"Credential {self.handle!r} for stage {self.stage!r} has been revoked"
            )
        return self._secret.get_secret_value()

    def revoke(self) -> bool:
        """Revoke this grant. Idempotent; returns True only on the first call."""
        if self.revoked:
            return False
        self.revoked_at_utc = utc_now_iso()
        self._secret = SecretStr("")
        self._on_revoke(self)
        return True


class CredentialVault:
    """
    Resolves named handles into per-stage scopes.

    Secrets are handed in at construction; the vault never looks at process
    environment itself.
    """

    def __init__(self, credentials: Mapping[str, Credential]) -> None:
        self._credentials = dict(credentials)
        self._lock = threading.Lock()
        self._next_id = 1
        self._active: dict[int, CredentialScope] = {}
        self.grants: list[CredentialScope] = []
        self.revocations: list[int] = []

    def handles(self) -> list[str]:
        return sorted(self._credentials)

    def grant(self, handle: str, *, stage: str) -> CredentialScope:
        cred = self._credentials.get(handle)
        if cred is None:
            raise CredentialError(f"Unknown credential handle {handle!r}")

        with self._lock:
            scope = CredentialScope(
                grant_id=self._next_id,
                handle=handle,
                stage=stage,
                username=cred.username,
                granted_at_utc=utc_now_iso(),
                _secret=cred.secret,
                _on_revoke=self._forget,
            )
            self._next_id += 1
            self._active[scope.grant_id] = scope
            self.grants.append(scope)

        log.info(
            "credential.grant", handle=handle, stage=stage, grant_id=scope.grant_id
        )
        return scope

    def revoke(self, scope: CredentialScope) -> bool:
        return scope.revoke()

    def _forget(self, scope: CredentialScope) -> None:
        with self._lock:
            self._active.pop(scope.grant_id, None)
            self.revocations.append(scope.grant_id)
        log.info(
            "credential.revoke",
            handle=scope.handle,
            stage=scope.stage,
            grant_id=scope.grant_id,
        )

    @contextmanager
    def scope(self, handle: str, *, stage: str) -> Iterator[CredentialScope]:
        """Grant on entry; revoke on every exit path, including aborts."""
        granted = self.grant(handle, stage=stage)
        try:
            yield granted
        finally:
            granted.revoke()

    def active_grants(self) -> list[CredentialScope]:
        with self._lock:
            return list(self._active.values())

    def revoke_outstanding(self) -> int:
        """Revoke anything still active. Returns how many were found."""
        leftover = self.active_grants()
        for scope in leftover:
            log.warning(
                "credential.leaked",
                handle=scope.handle,
                stage=scope.stage,
                grant_id=scope.grant_id,
            )
            scope.revoke()
        return len(leftover)

    def revocation_count(self, grant_id: int) -> int:
        return self.revocations.count(grant_id)
