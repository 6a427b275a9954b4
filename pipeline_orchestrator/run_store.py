import threading
from uuid import uuid4

from pipeline_orchestrator.schemas import (
    Dataset,
    ExecutionProgress,
    PipelineExecution,
    PipelineResults,
    StageExecution,
    utc_now,
)


def new_id() -> str:
    return str(uuid4())


class DatasetStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._datasets: dict[str, Dataset] = {}

    def put(self, dataset: Dataset) -> None:
        with self._lock:
            self._datasets[dataset.id] = dataset

    def get(self, dataset_id: str) -> Dataset | None:
        with self._lock:
            return self._datasets.get(dataset_id)

    def list(self) -> list[Dataset]:
        with self._lock:
            return list(self._datasets.values())

    def delete(self, dataset_id: str) -> bool:
        with self._lock:
            return self._datasets.pop(dataset_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._datasets)


class ExecutionTracker:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._executions: dict[str, PipelineExecution] = {}

    def register(self, execution: PipelineExecution) -> None:
        with self._lock:
            self._executions[execution.id] = execution

    def get(self, execution_id: str) -> PipelineExecution | None:
        with self._lock:
            return self._executions.get(execution_id)

    def active(self) -> list[PipelineExecution]:
        with self._lock:
            return list(self._executions.values())

    def evict(self, execution_id: str) -> None:
        with self._lock:
            self._executions.pop(execution_id, None)


def create_execution(pipeline_kind: str, *, total: int) -> PipelineExecution:
    return PipelineExecution(
        id=new_id(),
        pipeline_kind=pipeline_kind,
        progress=ExecutionProgress(current=0, total=total, stage=pipeline_kind),
    )


def mark_execution_running(execution: PipelineExecution) -> None:
    execution.status = "running"
    execution.started_at = utc_now()
    execution.error = None


def mark_execution_completed(execution: PipelineExecution, results: PipelineResults | None = None) -> None:
    execution.status = "completed"
    execution.completed_at = utc_now()
    execution.results = results
    execution.error = None


def mark_execution_failed(execution: PipelineExecution, error: Exception) -> None:
    execution.status = "failed"
    execution.completed_at = utc_now()
    execution.error = error


def start_stage(execution: PipelineExecution, stage_name: str) -> StageExecution:
    stage = StageExecution(name=stage_name, status="running", started_at=utc_now())
    execution.stages.append(stage)
    execution.progress.stage = stage_name
    return stage


def finish_stage_success(stage: StageExecution) -> None:
    stage.status = "completed"
    stage.completed_at = utc_now()
    stage.error = None


def finish_stage_failure(stage: StageExecution, error: Exception) -> None:
    stage.status = "failed"
    stage.completed_at = utc_now()
    stage.error = error
