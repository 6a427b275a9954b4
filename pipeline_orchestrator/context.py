from dataclasses import dataclass, field, replace
import logging
from typing import Any

from pipeline_orchestrator.action_log import ActionLog, LoggingActionLog
from pipeline_orchestrator.connectors import ConnectorRegistry, default_registry
from pipeline_orchestrator.events import EventBus
from pipeline_orchestrator.run_store import (
    DatasetStore,
    ExecutionTracker,
    create_execution,
    mark_execution_running,
)
from pipeline_orchestrator.schemas import ActionRecord, PipelineExecution


logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    datasets: DatasetStore = field(default_factory=DatasetStore)
    tracker: ExecutionTracker = field(default_factory=ExecutionTracker)
    events: EventBus = field(default_factory=EventBus)
    action_log: ActionLog = field(default_factory=LoggingActionLog)
    connectors: ConnectorRegistry = field(default_factory=default_registry)
    validation_progress_interval: int = 100
    default_batch_size: int = 500

    def begin(self, pipeline_kind: str, *, total: int, payload: dict[str, Any]) -> PipelineExecution:
        execution = create_execution(pipeline_kind, total=total)
        mark_execution_running(execution)
        self.tracker.register(execution)
        self.events.publish(f"{pipeline_kind}:started", {"execution_id": execution.id, **payload})
        return execution

    def report_progress(self, execution: PipelineExecution) -> None:
        self.events.publish(
            f"{execution.pipeline_kind}:progress",
            {"execution_id": execution.id, "progress": replace(execution.progress)},
        )

    def finish(self, execution: PipelineExecution, outcome: str, payload: dict[str, Any]) -> None:
        # Evict first so no observer of the terminal event still sees the execution as active.
        self.tracker.evict(execution.id)
        self.events.publish(
            f"{execution.pipeline_kind}:{outcome}",
            {"execution_id": execution.id, "execution": execution, **payload},
        )

    async def audit(self, action: ActionRecord) -> None:
        try:
            await self.action_log.record(action)
        except Exception:
            logger.exception(
                "action log write failed",
                extra={"system_targeted": action.system_targeted, "record_affected": action.record_affected},
            )
