from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.orm import Session, sessionmaker

from pipeline_orchestrator.config import Settings
from pipeline_orchestrator.connectors import default_registry
from pipeline_orchestrator.context import PipelineContext
from pipeline_orchestrator.database import build_session_factory
from pipeline_orchestrator.pipeline import DataPipelineOrchestrator
from pipeline_orchestrator.schemas import ActionRecord, DataFormat, DataSource, Dataset, DeploymentTarget


class RecordingActionLog:
    def __init__(self) -> None:
        self.actions: list[ActionRecord] = []

    async def record(self, action: ActionRecord) -> None:
        self.actions.append(action)


class MemoryTarget:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.written: list[dict[str, Any]] = []
        self.fail_on: str | None = None

    def _enter(self, stage: str) -> None:
        self.calls.append(stage)
        if self.fail_on == stage:
            raise ConnectionError(f"memory target refused {stage}")

    async def connect(self, target: DeploymentTarget) -> dict[str, bool]:
        self._enter("connect")
        return {"connected": True}

    async def prepare(self, dataset: Dataset, target: DeploymentTarget) -> list[dict[str, Any]]:
        self._enter("prepare")
        return list(dataset.rows or [])

    async def write(self, dataset, rows, target, connection, *, batch_size: int, overwrite: bool) -> int:
        self._enter("write")
        if overwrite:
            self.written.clear()
        self.written.extend(rows)
        return len(rows)


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def payloads(self, name: str) -> list[dict[str, Any]]:
        return [payload for event, payload in self.events if event == name]


@pytest.fixture()
def action_log() -> RecordingActionLog:
    return RecordingActionLog()


@pytest.fixture()
def memory_target() -> MemoryTarget:
    return MemoryTarget()


@pytest.fixture()
def context(action_log: RecordingActionLog, memory_target: MemoryTarget) -> PipelineContext:
    registry = default_registry()
    registry.register_target("memory", memory_target)
    return PipelineContext(action_log=action_log, connectors=registry)


@pytest.fixture()
def orchestrator(context: PipelineContext) -> DataPipelineOrchestrator:
    return DataPipelineOrchestrator(context)


@pytest.fixture()
def recorder(context: PipelineContext) -> EventRecorder:
    recorder = EventRecorder()
    context.events.subscribe("*", recorder)
    return recorder


@pytest.fixture()
def inline_source() -> Callable[[Any], DataSource]:
    def build(content: Any) -> DataSource:
        return DataSource(type="api", location="inline", content=content)

    return build


@pytest.fixture()
def json_format() -> DataFormat:
    return DataFormat(type="json")


@pytest.fixture()
def memory_destination() -> DeploymentTarget:
    return DeploymentTarget(type="memory", environment="development", location="memory://test")


@pytest.fixture()
def make_dataset(orchestrator: DataPipelineOrchestrator, inline_source, json_format):
    async def build(rows: list[dict[str, Any]], name: str = "fixture") -> Dataset:
        return await orchestrator.ingest(inline_source(rows), json_format, name=name)

    return build


@pytest.fixture()
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        app_name="pipeline-orchestrator",
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        log_level="INFO",
        validation_progress_interval=100,
        default_batch_size=2,
        schedule_hour_utc=2,
        schedule_minute_utc=0,
    )


@pytest.fixture()
def session_factory(test_settings: Settings) -> sessionmaker[Session]:
    return build_session_factory(test_settings.database_url)
