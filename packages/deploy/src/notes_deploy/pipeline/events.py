from __future__ import annotations

import json
import os
import socket
import threading
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from notes_deploy.core import json_default, utc_now_iso

from .types import Event


class EventType(str, Enum):
    RUN_ENV = "run.env"
    RUN_START = "run.start"
    RUN_FINISH = "run.finish"
    RUN_ABORT = "run.abort"

    STAGE_START = "stage.start"
    STAGE_WARN = "stage.warn"
    STAGE_METRICS = "stage.metrics"
    STAGE_SUCCESS = "stage.success"
    STAGE_FAILED = "stage.failed"
    STAGE_SKIPPED = "stage.skipped"

    POST_ACTION_START = "post.start"
    POST_ACTION_FINISH = "post.finish"
    POST_ACTION_FAILED = "post.failed"

    CREDENTIAL_GRANT = "credential.grant"
    CREDENTIAL_REVOKE = "credential.revoke"

    BUILD_STEP_FINISH = "build.step.finish"
    ARTIFACT_PACKAGED = "artifact.packaged"

    PUBLISH_START = "publish.start"
    PUBLISH_FINISH = "publish.finish"

    APPLY_PLAN = "apply.plan"
    APPLY_RESOURCE = "apply.resource"
    APPLY_FINISH = "apply.finish"

    ROLLOUT_START = "rollout.start"
    ROLLOUT_IMAGE_SET = "rollout.image_set"
    ROLLOUT_FINISH = "rollout.finish"

    HEALTH_ATTEMPT = "health.attempt"
    HEALTH_FINISH = "health.finish"

    DIAGNOSTICS_COLLECTED = "diagnostics.collected"


class EventSink:
    """Append-only JSONL event log for one run."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

        self.emit(
            Event(
                type=EventType.RUN_ENV.value,
                ts_utc=utc_now_iso(),
                run_id="__init__",
                data={
                    "hostname": socket.gethostname(),
                    "pid": os.getpid(),
                    "cwd": str(Path.cwd()),
                },
            )
        )

    def emit(self, event: Event) -> None:
        line = json.dumps(asdict(event), ensure_ascii=False, default=json_default)
        with self._lock:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)
                f.write("\n")

    def read(self) -> list[Event]:
        out: list[Event] = []
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    out.append(Event(**json.loads(line)))
        return out


def make_event(
    *,
    event_type: EventType | str,
    run_id: str,
    stage: Optional[str] = None,
    **data: Any,
) -> Event:
    type_value = (
        event_type.value if isinstance(event_type, EventType) else str(event_type)
    )
    return Event(
        type=type_value,
        ts_utc=utc_now_iso(),
        run_id=run_id,
        stage=stage,
        data=dict(data),
    )
