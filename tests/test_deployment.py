import json
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from pipeline_orchestrator.db_models import DeployedRecord
from pipeline_orchestrator.errors import ConnectorNotFoundError, StageFailedError
from pipeline_orchestrator.schemas import DeploymentTarget


ROWS = [{"id": 1}, {"id": 2}, {"id": 3}]


@pytest.mark.asyncio
async def test_dry_run_never_touches_the_target(
    orchestrator, make_dataset, memory_target, memory_destination, recorder, action_log
) -> None:
    dataset = await make_dataset(ROWS)
    action_log.actions.clear()

    status = await orchestrator.deploy(dataset, memory_destination, dry_run=True)
    await orchestrator.context.events.drain()

    assert status.deployed is False
    assert status.records_deployed == dataset.metadata.row_count == 3
    assert status.deployment_time_ms == 0
    assert status.rollback_available is False
    assert memory_target.calls == []
    assert action_log.actions == []

    completed = recorder.payloads("deployment:completed")[0]
    assert completed["dry_run"] is True
    assert completed["execution"].status == "completed"
    assert completed["execution"].stages == []


@pytest.mark.asyncio
async def test_deploy_runs_connect_prepare_deploy(
    orchestrator, make_dataset, memory_target, memory_destination, recorder, action_log
) -> None:
    dataset = await make_dataset(ROWS)

    status = await orchestrator.deploy(dataset, memory_destination)
    await orchestrator.context.events.drain()

    assert status.deployed is True
    assert status.records_deployed == 3
    assert status.rollback_available is True
    assert status.deployment_time_ms >= 0
    assert memory_target.calls == ["connect", "prepare", "write"]
    assert memory_target.written == ROWS

    execution = recorder.payloads("deployment:completed")[0]["execution"]
    assert [stage.name for stage in execution.stages] == ["connect", "prepare", "deploy"]
    assert recorder.payloads("deployment:completed")[0]["dry_run"] is False

    deployment_actions = [action for action in action_log.actions if action.system_targeted == "data-deployment"]
    assert len(deployment_actions) == 1
    assert deployment_actions[0].record_affected == dataset.id
    assert deployment_actions[0].payload_summary["environment"] == "development"


@pytest.mark.asyncio
async def test_connect_failure_is_returned_not_raised(
    orchestrator, make_dataset, memory_target, memory_destination, recorder
) -> None:
    dataset = await make_dataset(ROWS)
    memory_target.fail_on = "connect"

    status = await orchestrator.deploy(dataset, memory_destination)
    await orchestrator.context.events.drain()

    assert status.deployed is False
    assert status.target is memory_destination
    assert isinstance(status.error, StageFailedError)
    assert status.error.stage == "connect"
    assert memory_target.calls == ["connect"]
    assert orchestrator.get_active_executions() == []

    failed = recorder.payloads("deployment:failed")
    assert len(failed) == 1
    assert failed[0]["execution"].status == "failed"
    assert failed[0]["execution"].stages[0].status == "failed"


@pytest.mark.asyncio
async def test_unknown_target_type_fails_at_connect(orchestrator, make_dataset) -> None:
    dataset = await make_dataset(ROWS)
    target = DeploymentTarget(type="queue", environment="staging", location="orders")

    status = await orchestrator.deploy(dataset, target)

    assert status.deployed is False
    assert isinstance(status.error.__cause__, ConnectorNotFoundError)


@pytest.mark.asyncio
async def test_file_target_writes_jsonl(orchestrator, make_dataset, tmp_path: Path) -> None:
    dataset = await make_dataset(ROWS)
    output = tmp_path / "out" / "published.jsonl"
    target = DeploymentTarget(type="file", environment="development", location=str(output))

    await orchestrator.deploy(dataset, target)
    status = await orchestrator.deploy(dataset, target)

    assert status.deployed is True
    lines = output.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 6

    await orchestrator.deploy(dataset, target, overwrite=True)
    lines = output.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line) for line in lines] == ROWS


@pytest.mark.asyncio
async def test_database_target_commits_in_batches(orchestrator, make_dataset, test_settings, session_factory) -> None:
    dataset = await make_dataset(ROWS)
    target = DeploymentTarget(type="database", environment="staging", location=test_settings.database_url)

    status = await orchestrator.deploy(dataset, target, batch_size=2)
    again = await orchestrator.deploy(dataset, target, batch_size=2, overwrite=True)

    assert status.deployed is True
    assert again.deployed is True
    with session_factory() as db:
        stored = db.execute(
            select(DeployedRecord).where(DeployedRecord.dataset_id == dataset.id).order_by(DeployedRecord.record_index)
        ).scalars().all()
    assert [json.loads(record.payload) for record in stored] == ROWS


@pytest.mark.asyncio
async def test_database_target_reuses_one_engine_per_url(orchestrator, make_dataset) -> None:
    dataset = await make_dataset(ROWS)
    target = DeploymentTarget(type="database", environment="development", location="sqlite://")

    first = await orchestrator.deploy(dataset, target)
    repeat = await orchestrator.deploy(dataset, target)

    assert first.deployed is True
    assert repeat.deployed is False
    assert isinstance(repeat.error.__cause__, IntegrityError)

    connector = orchestrator.context.connectors.target_for(target)
    session_factory = await connector.connect(target)
    assert session_factory is await connector.connect(target)
    with session_factory() as db:
        stored = db.execute(select(DeployedRecord).where(DeployedRecord.dataset_id == dataset.id)).scalars().all()
    assert len(stored) == 3

    overwritten = await orchestrator.deploy(dataset, target, overwrite=True)
    assert overwritten.deployed is True

    orchestrator.context.connectors.close()
    assert await connector.connect(target) is not session_factory
