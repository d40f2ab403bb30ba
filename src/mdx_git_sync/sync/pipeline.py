"""Processing pipeline declared on every sync audit action.

Each mutation recorded by an action is expected to flow through the same
ordered stages downstream of the sync engine:

1. ``things``    -- insert/update the entity row
2. ``relations`` -- create relationship edges
3. ``chunk``     -- split content for retrieval
4. ``embed``     -- generate embeddings per chunk
5. ``search``    -- index for full-text and vector search
6. ``artifacts`` -- build output formats
7. ``events``    -- emit completion events

The sync engine only declares the pipeline and tracks the ``things``
stage; the remaining stages belong to downstream workers.  The helpers
here never mutate: ``update_stage()`` returns a new ``ActionPipeline``.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class PipelineStage(str, Enum):
    """Ordered processing stages of an action."""

    THINGS = "things"
    RELATIONS = "relations"
    CHUNK = "chunk"
    EMBED = "embed"
    SEARCH = "search"
    ARTIFACTS = "artifacts"
    EVENTS = "events"


PIPELINE_STAGES: tuple[PipelineStage, ...] = tuple(PipelineStage)


class StageStatus(str, Enum):
    """Status of one pipeline stage."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class PipelineStageInfo(BaseModel):
    """Tracking info for a single stage.

    Attributes:
        stage: Stage name.
        status: Current status.
        progress: Progress within the stage, 0-100.
        processed: Items processed so far.
        total: Items to process.
        started_at: When the stage became active.
        completed_at: When the stage finished (any terminal status).
        error: Failure message, when ``status`` is ``failed``.
        result: Stage-specific result data.
    """

    stage: PipelineStage
    status: StageStatus = StageStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    processed: int = 0
    total: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    result: dict[str, Any] | None = None

    model_config = {"frozen": True}


class ActionPipeline(BaseModel):
    """Pipeline state for one action."""

    current_stage: PipelineStage | None = None
    stages: dict[PipelineStage, PipelineStageInfo]
    progress: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"frozen": True}


def create_pipeline() -> ActionPipeline:
    """Return a pipeline with every stage pending."""
    return ActionPipeline(
        stages={stage: PipelineStageInfo(stage=stage) for stage in PIPELINE_STAGES},
    )


def calculate_pipeline_progress(pipeline: ActionPipeline) -> int:
    """Overall progress (0-100) from the stage states.

    Completed and skipped stages count as whole stages; an active stage
    contributes its own fractional progress.
    """
    done = 0
    partial = 0.0
    for stage in PIPELINE_STAGES:
        info = pipeline.stages[stage]
        if info.status in (StageStatus.COMPLETED, StageStatus.SKIPPED):
            done += 1
        elif info.status == StageStatus.ACTIVE:
            partial = info.progress / 100
    return math.floor((done + partial) / len(PIPELINE_STAGES) * 100 + 0.5)


def update_stage(
    pipeline: ActionPipeline,
    stage: PipelineStage,
    status: StageStatus,
    *,
    processed: int | None = None,
    total: int | None = None,
    error: str | None = None,
    result: dict[str, Any] | None = None,
) -> ActionPipeline:
    """Return a copy of *pipeline* with *stage* moved to *status*.

    Stage progress is derived from ``processed``/``total`` while active
    and pinned to 100 once completed or skipped.
    """
    now = datetime.now(timezone.utc)
    info = pipeline.stages[stage]
    processed = info.processed if processed is None else processed
    total = info.total if total is None else total

    if status in (StageStatus.COMPLETED, StageStatus.SKIPPED):
        progress = 100
    elif total:
        progress = min(100, processed * 100 // total)
    else:
        progress = info.progress

    terminal = status in (
        StageStatus.COMPLETED,
        StageStatus.FAILED,
        StageStatus.SKIPPED,
    )
    new_info = info.model_copy(
        update={
            "status": status,
            "progress": progress,
            "processed": processed,
            "total": total,
            "started_at": info.started_at
            or (now if status == StageStatus.ACTIVE else None),
            "completed_at": now if terminal else None,
            "error": error if status == StageStatus.FAILED else info.error,
            "result": result if result is not None else info.result,
        }
    )
    stages = {**pipeline.stages, stage: new_info}
    updated = pipeline.model_copy(
        update={
            "stages": stages,
            "current_stage": stage if status == StageStatus.ACTIVE else None,
            "started_at": pipeline.started_at or now,
        }
    )
    all_terminal = all(
        stages[s].status
        in (StageStatus.COMPLETED, StageStatus.SKIPPED, StageStatus.FAILED)
        for s in PIPELINE_STAGES
    )
    return updated.model_copy(
        update={
            "progress": calculate_pipeline_progress(updated),
            "completed_at": now if all_terminal else None,
        }
    )
