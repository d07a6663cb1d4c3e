from .context import RunContext
from .driver import PipelineDriver, PostAction, PostActions
from .events import EventSink, EventType, make_event
from .stage import FunctionStage, Stage, StageFn, run_stage
from .types import Event, PipelineRun, RunStatus, StageRecord, StageStatus

__all__ = [
    "Event",
    "EventSink",
    "EventType",
    "FunctionStage",
    "PipelineDriver",
    "PipelineRun",
    "PostAction",
    "PostActions",
    "RunContext",
    "RunStatus",
    "Stage",
    "StageFn",
    "StageRecord",
    "StageStatus",
    "make_event",
    "run_stage",
]
