from collections.abc import Awaitable, Callable
import logging
from typing import TypeVar

from pipeline_orchestrator.errors import StageFailedError
from pipeline_orchestrator.run_store import finish_stage_failure, finish_stage_success, start_stage
from pipeline_orchestrator.schemas import PipelineExecution


logger = logging.getLogger(__name__)
T = TypeVar("T")


async def run_stage(
    execution: PipelineExecution,
    stage_name: str,
    operation: Callable[[], Awaitable[T]],
) -> T:
    stage = start_stage(execution, stage_name)
    logger.debug("stage started", extra={"execution_id": execution.id, "stage": stage_name})
    try:
        result = await operation()
    except Exception as exc:
        finish_stage_failure(stage, exc)
        logger.warning(
            "stage failed",
            extra={"execution_id": execution.id, "stage": stage_name, "error": str(exc)},
        )
        raise StageFailedError(
            execution_id=execution.id,
            pipeline_kind=execution.pipeline_kind,
            stage=stage_name,
            started_at=stage.started_at,
            completed_at=stage.completed_at,
            cause=exc,
        ) from exc

    finish_stage_success(stage)
    logger.debug(
        "stage completed",
        extra={"execution_id": execution.id, "stage": stage_name, "duration_ms": stage.duration_ms},
    )
    return result
