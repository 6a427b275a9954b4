from functools import partial
import logging
import time
from typing import Any

from pipeline_orchestrator.action_log import success_action
from pipeline_orchestrator.connectors import SourceConnector
from pipeline_orchestrator.context import PipelineContext
from pipeline_orchestrator.run_store import mark_execution_completed, mark_execution_failed, new_id
from pipeline_orchestrator.schemas import (
    DataFormat,
    DataSource,
    Dataset,
    DatasetMetadata,
    PipelineResults,
    utc_now,
)
from pipeline_orchestrator.stage import run_stage
from pipeline_orchestrator.step_logic import checksum, infer_schema, parse_rows, serialized_size


logger = logging.getLogger(__name__)

INGESTION_STAGES = ("connect", "read", "parse", "infer-schema")


class IngestionPipeline:
    kind = "ingestion"

    def __init__(self, context: PipelineContext) -> None:
        self.context = context

    async def run(
        self,
        source: DataSource,
        data_format: DataFormat,
        *,
        name: str | None = None,
        batch_size: int | None = None,
        parallel: bool = False,
    ) -> Dataset:
        dataset_id = new_id()
        execution = self.context.begin(
            self.kind,
            total=len(INGESTION_STAGES),
            payload={"source": source, "format": data_format},
        )
        logger.info(
            "starting data ingestion",
            extra={"execution_id": execution.id, "source_type": source.type, "format_type": data_format.type},
        )

        try:
            connector: SourceConnector | None = None

            async def connect() -> Any:
                nonlocal connector
                connector = self.context.connectors.source_for(source)
                return await connector.connect(source)

            connection = await self._stage(execution, "connect", connect)
            raw = await self._stage(
                execution,
                "read",
                lambda: connector.read(source, data_format, connection, batch_size=batch_size),
            )
            rows = await self._stage(execution, "parse", partial(_parse, raw, data_format))
            # The schema is re-inferred even when the format declares one.
            schema = await self._stage(execution, "infer-schema", partial(_infer, rows))

            now = utc_now()
            dataset = Dataset(
                id=dataset_id,
                name=name or f"dataset-{int(time.time() * 1000)}",
                source=source,
                format=data_format,
                schema=schema,
                metadata=DatasetMetadata(
                    created_at=now,
                    updated_at=now,
                    row_count=len(rows),
                    size_bytes=serialized_size(rows),
                    checksum=checksum(rows),
                ),
                rows=rows,
            )
            self.context.datasets.put(dataset)

            mark_execution_completed(execution, PipelineResults(dataset=dataset))
            self.context.finish(execution, "completed", {"dataset": dataset})
            logger.info(
                "data ingestion completed",
                extra={"execution_id": execution.id, "dataset_id": dataset.id, "row_count": len(rows)},
            )

            await self.context.audit(
                success_action(
                    system_targeted="data-ingestion",
                    record_affected=dataset.id,
                    payload_summary={"source": source.type, "format": data_format.type, "records": len(rows)},
                    response_confirmation="Data ingested successfully",
                )
            )
            return dataset
        except Exception as exc:
            mark_execution_failed(execution, exc)
            self.context.finish(execution, "failed", {"error": exc})
            logger.exception("data ingestion failed", extra={"execution_id": execution.id})
            raise
        finally:
            self.context.tracker.evict(execution.id)

    async def _stage(self, execution, stage_name: str, operation):
        result = await run_stage(execution, stage_name, operation)
        execution.progress.current += 1
        self.context.report_progress(execution)
        return result


async def _parse(raw: Any, data_format: DataFormat):
    return parse_rows(raw, data_format)


async def _infer(rows):
    return infer_schema(rows)
