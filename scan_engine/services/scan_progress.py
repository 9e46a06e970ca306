"""
Scan progress state machine.

A run moves through a fixed sequence of stages. Each stage goes
pending -> in_progress -> completed (or skipped), strictly one at a time
and in order, and the run ends completed or failed. ``transition`` is a
pure function from (progress, event) to the next progress; persisting the
result is the caller's job and happens after every transition so external
pollers always see the latest state.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from scan_engine.exceptions import InvalidTransition


class ScanStage(str, Enum):
    """Pipeline stages, in execution order."""

    INITIALIZATION = "initialization"
    KEYWORD_SEARCH = "keyword_search"
    TRADEMARK_SEARCH = "trademark_search"
    PHRASE_MATCHING = "phrase_matching"
    MARKETPLACE_SCAN = "marketplace_scan"
    PLATFORM_SCAN = "platform_scan"
    FINALIZATION = "finalization"

    @property
    def display_name(self) -> str:
        return STAGE_DISPLAY_NAMES[self]


STAGE_DISPLAY_NAMES = {
    ScanStage.INITIALIZATION: "Search Initialization",
    ScanStage.KEYWORD_SEARCH: "Keyword Discovery",
    ScanStage.TRADEMARK_SEARCH: "Trademark Protection Scan",
    ScanStage.PHRASE_MATCHING: "Content Signature Analysis",
    ScanStage.MARKETPLACE_SCAN: "Marketplace Intelligence",
    ScanStage.PLATFORM_SCAN: "Platform Network Scan",
    ScanStage.FINALIZATION: "Results Compilation",
}

STAGE_ORDER: Tuple[ScanStage, ...] = tuple(ScanStage)


class StageStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class StageProgress:
    """State of one stage."""

    stage: ScanStage
    status: StageStatus = StageStatus.PENDING
    result_count: int = 0
    self_healed: bool = False
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "display_name": self.stage.display_name,
            "status": self.status.value,
            "result_count": self.result_count,
            "self_healed": self.self_healed,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StageProgress":
        return cls(
            stage=ScanStage(data["stage"]),
            status=StageStatus(data.get("status", StageStatus.PENDING.value)),
            result_count=int(data.get("result_count", 0)),
            self_healed=bool(data.get("self_healed", False)),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )


@dataclass(frozen=True)
class ScanProgress:
    """Serializable progress of a whole run."""

    status: RunStatus = RunStatus.RUNNING
    stages: Tuple[StageProgress, ...] = field(
        default_factory=lambda: tuple(StageProgress(stage=s) for s in STAGE_ORDER)
    )
    error: Optional[str] = None

    @classmethod
    def initial(cls) -> "ScanProgress":
        return cls()

    def stage(self, stage: ScanStage) -> StageProgress:
        return self.stages[STAGE_ORDER.index(stage)]

    @property
    def current_stage(self) -> Optional[ScanStage]:
        """Stage in progress, else the last stage that has finished."""
        current = None
        for entry in self.stages:
            if entry.status == StageStatus.IN_PROGRESS:
                return entry.stage
            if entry.status == StageStatus.COMPLETED:
                current = entry.stage
        return current

    @property
    def percent_complete(self) -> int:
        done = sum(1 for s in self.stages if s.status == StageStatus.COMPLETED)
        return round(done * 100 / len(self.stages))

    def to_dict(self) -> Dict[str, Any]:
        current = self.current_stage
        return {
            "status": self.status.value,
            "current_stage": current.value if current else None,
            "percent_complete": self.percent_complete,
            "error": self.error,
            "stages": [s.to_dict() for s in self.stages],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScanProgress":
        if not data:
            return cls.initial()
        by_stage = {
            ScanStage(item["stage"]): StageProgress.from_dict(item)
            for item in data.get("stages", [])
        }
        return cls(
            status=RunStatus(data.get("status", RunStatus.RUNNING.value)),
            stages=tuple(by_stage.get(s, StageProgress(stage=s)) for s in STAGE_ORDER),
            error=data.get("error"),
        )

    def _with_stage(self, updated: StageProgress) -> "ScanProgress":
        index = STAGE_ORDER.index(updated.stage)
        stages = self.stages[:index] + (updated,) + self.stages[index + 1:]
        return replace(self, stages=stages)


# Events

@dataclass(frozen=True)
class StageStarted:
    stage: ScanStage
    at: Optional[datetime] = None


@dataclass(frozen=True)
class StageCompleted:
    stage: ScanStage
    result_count: int = 0
    self_healed: bool = False
    at: Optional[datetime] = None


@dataclass(frozen=True)
class RunCompleted:
    at: Optional[datetime] = None


@dataclass(frozen=True)
class RunFailed:
    error: str
    at: Optional[datetime] = None


ProgressEvent = Union[StageStarted, StageCompleted, RunCompleted, RunFailed]


def _iso(at: Optional[datetime]) -> Optional[str]:
    return at.isoformat() if at else None


def transition(progress: ScanProgress, event: ProgressEvent) -> ScanProgress:
    """
    Apply an event to the run progress.

    Raises:
        InvalidTransition: the event is not legal in the current state
    """
    if progress.status != RunStatus.RUNNING:
        raise InvalidTransition(
            f"Run is already {progress.status.value}; cannot apply {type(event).__name__}"
        )

    if isinstance(event, RunFailed):
        # Stage states are kept exactly as far as processing got.
        return replace(progress, status=RunStatus.FAILED, error=event.error)

    if isinstance(event, RunCompleted):
        unfinished = [
            s.stage.value for s in progress.stages
            if s.status in (StageStatus.PENDING, StageStatus.IN_PROGRESS)
        ]
        if unfinished:
            raise InvalidTransition(f"Cannot complete run with unfinished stages: {unfinished}")
        return replace(progress, status=RunStatus.COMPLETED)

    if not isinstance(event, (StageStarted, StageCompleted)):
        raise InvalidTransition(f"Unknown progress event: {event!r}")

    stage_entry = progress.stage(event.stage)
    index = STAGE_ORDER.index(event.stage)
    earlier_open = [
        s.stage.value for s in progress.stages[:index]
        if s.status in (StageStatus.PENDING, StageStatus.IN_PROGRESS)
    ]

    if isinstance(event, StageStarted):
        if stage_entry.status != StageStatus.PENDING:
            raise InvalidTransition(
                f"Stage {event.stage.value} cannot start from {stage_entry.status.value}"
            )
        if earlier_open:
            raise InvalidTransition(
                f"Stage {event.stage.value} cannot start before {earlier_open[0]} finishes"
            )
        return progress._with_stage(replace(
            stage_entry,
            status=StageStatus.IN_PROGRESS,
            started_at=_iso(event.at),
        ))

    if stage_entry.status != StageStatus.IN_PROGRESS:
        raise InvalidTransition(
            f"Stage {event.stage.value} cannot complete from {stage_entry.status.value}"
        )
    return progress._with_stage(replace(
        stage_entry,
        status=StageStatus.COMPLETED,
        result_count=max(0, event.result_count),
        self_healed=event.self_healed,
        completed_at=_iso(event.at),
    ))


def fail_run(progress: ScanProgress, error: str) -> ScanProgress:
    """
    Mark the run failed.

    Unlike ``transition``, this also accepts a run whose completion was
    already applied, for when the write that records the completion fails.

    Raises:
        InvalidTransition: the run has already failed
    """
    if progress.status == RunStatus.COMPLETED:
        return replace(progress, status=RunStatus.FAILED, error=error)
    return transition(progress, RunFailed(error))
