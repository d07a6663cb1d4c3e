from __future__ import annotations

import pytest
from notes_deploy.core import CredentialError, PipelineAborted
from notes_deploy.credentials import CredentialVault


def test_grant_unknown_handle(vault: CredentialVault) -> None:
    with pytest.raises(CredentialError, match="nope"):
        vault.grant("nope", stage="publish")
    assert vault.grants == []


def test_scope_revokes_on_success_and_failure(vault: CredentialVault) -> None:
    with vault.scope("registry", stage="publish") as scope:
        assert scope.active
        assert scope.secret_value() == "s3cret"
    assert scope.revoked
    with pytest.raises(CredentialError):
        scope.secret_value()

    with pytest.raises(PipelineAborted):
        with vault.scope("registry", stage="publish") as aborted:
            raise PipelineAborted("SIGINT")
    assert aborted.revoked

    assert vault.active_grants() == []
    assert vault.revocations == [1, 2]


def test_revoke_is_idempotent(vault: CredentialVault) -> None:
    with vault.scope("registry", stage="publish") as scope:
        assert scope.revoke() is True
        assert scope.revoke() is False
    assert vault.revocation_count(scope.grant_id) == 1


def test_revoke_outstanding(vault: CredentialVault) -> None:
    a = vault.grant("registry", stage="publish")
    b = vault.grant("registry", stage="publish")
    b.revoke()

    assert vault.revoke_outstanding() == 1
    assert a.revoked
    assert vault.revoke_outstanding() == 0
    assert sorted(vault.revocations) == [a.grant_id, b.grant_id]


def test_secret_not_in_repr(vault: CredentialVault) -> None:
    scope = vault.grant("registry", stage="publish")
    assert "s3cret" not in repr(scope)
    assert vault.handles() == ["registry"]
