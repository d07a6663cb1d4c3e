from __future__ import annotations

from notes_deploy.core.logging import REDACTED, redact_secrets


def test_redact_secrets_masks_credential_keys() -> None:
    event = {
        "event": "registry.login",
        "username": "ci",
        "password": "s3cret",
        "registry_token": "abc",
        "Authorization": "Bearer xyz",
    }
    out = redact_secrets(None, "info", event)

    assert out["username"] == "ci"
    assert out["event"] == "registry.login"
    assert out["password"] == REDACTED
    assert out["registry_token"] == REDACTED
    assert out["Authorization"] == REDACTED
