from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from notes_deploy.credentials import CredentialVault
from notes_deploy.pipeline.context import RunContext
from notes_deploy.pipeline.events import EventType

from .publisher import RegistryPublisher


@dataclass(slots=True)
class PublishStage:
    publisher: RegistryPublisher
    vault: CredentialVault
    stage_id: str = "publish"

    def run(self, ctx: RunContext) -> dict[str, Any]:
        artifact = ctx.output("package")["artifact"]
        handle = ctx.config.registry_credential

        ctx.emit(EventType.PUBLISH_START, stage=self.stage_id, ref=artifact.ref)
        with self.vault.scope(handle, stage=self.stage_id) as scope:
            ctx.emit(
                EventType.CREDENTIAL_GRANT,
                stage=self.stage_id,
                handle=handle,
                grant_id=scope.grant_id,
            )
            try:
                result = self.publisher.publish(artifact, scope, sleep=ctx.cancel.sleep)
            finally:
                ctx.emit(
                    EventType.CREDENTIAL_REVOKE,
                    stage=self.stage_id,
                    handle=handle,
                    grant_id=scope.grant_id,
                )

        ctx.emit(EventType.PUBLISH_FINISH, stage=self.stage_id, **result.to_dict())
        return {
            "image": f"{artifact.repository}:{result.version_tag}",
            "version_tag": result.version_tag,
            "latest_alias_moved": result.latest_alias_moved,
            "digest": result.digest,
            "_metrics": {"attempts": result.attempts, "uploaded": int(result.uploaded)},
        }
