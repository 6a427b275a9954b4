from pathlib import Path

import pytest

from pipeline_orchestrator.errors import StageFailedError
from pipeline_orchestrator.schemas import DataFormat, DataSchema, DataSource, SchemaField
from pipeline_orchestrator.step_logic import checksum


RECORDS = [
    {"id": 1, "name": "Sample 1", "value": 100},
    {"id": 2, "name": "Sample 2", "value": 200},
    {"id": 3, "name": "Sample 3", "value": 300},
]


@pytest.mark.asyncio
async def test_ingest_inline_json_records(orchestrator, inline_source, json_format, recorder, action_log) -> None:
    dataset = await orchestrator.ingest(inline_source(RECORDS), json_format, name="samples")
    await orchestrator.context.events.drain()

    assert dataset.name == "samples"
    assert dataset.metadata.row_count == 3
    assert dataset.rows == RECORDS
    assert dataset.metadata.checksum == checksum(RECORDS)
    assert dataset.metadata.size_bytes > 0
    assert dataset.metadata.updated_at >= dataset.metadata.created_at
    assert dataset.schema.field_names() == ["id", "name", "value"]
    assert orchestrator.get_dataset(dataset.id) is dataset

    assert recorder.names()[0] == "ingestion:started"
    assert "ingestion:completed" in recorder.names()
    completed = recorder.payloads("ingestion:completed")[0]
    execution = completed["execution"]
    assert completed["dataset"] is dataset
    assert execution.status == "completed"
    assert [stage.name for stage in execution.stages] == ["connect", "read", "parse", "infer-schema"]
    assert execution.progress.current == 4
    assert orchestrator.get_active_executions() == []

    assert len(action_log.actions) == 1
    action = action_log.actions[0]
    assert action.agent == "data-pipeline"
    assert action.system_targeted == "data-ingestion"
    assert action.action_type == "Write"
    assert action.record_affected == dataset.id
    assert action.status == "success"
    assert action.payload_summary["records"] == 3


@pytest.mark.asyncio
async def test_ingest_always_infers_schema(orchestrator, inline_source) -> None:
    declared = DataSchema(fields=[SchemaField(name="legacy", type="string")])

    dataset = await orchestrator.ingest(inline_source([{"a": 1}]), DataFormat(type="json", schema=declared))

    assert dataset.schema.field_names() == ["a"]
    assert dataset.name.startswith("dataset-")


@pytest.mark.asyncio
async def test_ingest_jsonl_file(orchestrator, tmp_path: Path) -> None:
    input_file = tmp_path / "records.jsonl"
    input_file.write_text('{"id": "1"}\n{"id": "2"}\n', encoding="utf-8")

    dataset = await orchestrator.ingest(
        DataSource(type="file", location=str(input_file)),
        DataFormat(type="jsonl"),
    )

    assert dataset.metadata.row_count == 2


@pytest.mark.asyncio
async def test_ingest_failure_propagates_and_registers_nothing(orchestrator, recorder, action_log, tmp_path) -> None:
    missing = DataSource(type="file", location=str(tmp_path / "missing.jsonl"))

    with pytest.raises(StageFailedError) as excinfo:
        await orchestrator.ingest(missing, DataFormat(type="jsonl"))
    await orchestrator.context.events.drain()

    assert excinfo.value.stage == "connect"
    assert isinstance(excinfo.value.__cause__, FileNotFoundError)
    assert orchestrator.list_datasets() == []
    assert orchestrator.get_active_executions() == []
    assert action_log.actions == []

    failed = recorder.payloads("ingestion:failed")
    assert len(failed) == 1
    execution = failed[0]["execution"]
    assert execution.status == "failed"
    assert execution.error is excinfo.value
    assert execution.stages[0].status == "failed"


@pytest.mark.asyncio
async def test_parse_failure_is_recorded_on_parse_stage(orchestrator, inline_source, recorder) -> None:
    with pytest.raises(StageFailedError) as excinfo:
        await orchestrator.ingest(inline_source("{not json"), DataFormat(type="json"))
    await orchestrator.context.events.drain()

    assert excinfo.value.stage == "parse"
    execution = recorder.payloads("ingestion:failed")[0]["execution"]
    assert [stage.status for stage in execution.stages] == ["completed", "completed", "failed"]


@pytest.mark.asyncio
async def test_audit_failure_does_not_fail_ingestion(orchestrator, inline_source, json_format) -> None:
    class BrokenActionLog:
        async def record(self, action) -> None:
            raise RuntimeError("audit store offline")

    orchestrator.context.action_log = BrokenActionLog()

    dataset = await orchestrator.ingest(inline_source([{"a": 1}]), json_format)

    assert orchestrator.get_dataset(dataset.id) is dataset
