from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from notes_deploy.core import CancelToken, ILogger, InternalError, PipelineConfig

from .events import EventSink, EventType, make_event


@dataclass(slots=True)
class RunContext:
    """
    Context shared across stages for a single pipeline run.
    """

    run_id: str
    run_root: Path
    config: PipelineConfig
    logger: ILogger
    events: EventSink
    cancel: CancelToken

    # stage_id -> outputs returned by that stage
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def build_number(self) -> int:
        return self.config.build_number

    def stage_logger(self, stage: str) -> ILogger:
        return self.logger.bind(stage=stage)

    def emit(
        self, event: EventType | str, *, stage: str | None = None, **kw: Any
    ) -> None:
        event_value = event.value if isinstance(event, EventType) else str(event)
        self.events.emit(
            make_event(event_type=event_value, run_id=self.run_id, stage=stage, **kw)
        )
        # Keep event chatter at debug level to leave console logs readable.
        self.logger.debug(event_value, event_type=event_value, stage=stage, **kw)

    def output(self, stage_id: str) -> dict[str, Any]:
        """Outputs of an earlier stage that ran in this run."""
        try:
            return self.outputs[stage_id]
        except KeyError:
            raise InternalError(
                f"Stage output {stage_id!r} not available; is that stage in the plan?"
            ) from None
