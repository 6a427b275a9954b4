import copy
from functools import partial
import logging

from pipeline_orchestrator.context import PipelineContext
from pipeline_orchestrator.run_store import mark_execution_completed, mark_execution_failed, new_id
from pipeline_orchestrator.schemas import (
    Dataset,
    DatasetMetadata,
    PipelineResults,
    Row,
    TransformRule,
    utc_now,
)
from pipeline_orchestrator.stage import run_stage
from pipeline_orchestrator.step_logic import apply_transform_rule, checksum, infer_schema, serialized_size


logger = logging.getLogger(__name__)

TRANSFORMED_TAG = "transformed"


def refresh_rows(dataset: Dataset, rows: list[Row]) -> None:
    dataset.rows = rows
    dataset.metadata.row_count = len(rows)
    dataset.metadata.size_bytes = serialized_size(rows)
    dataset.metadata.checksum = checksum(rows)
    dataset.metadata.updated_at = utc_now()


def derive_dataset(dataset: Dataset, rows: list[Row]) -> Dataset:
    now = utc_now()
    return Dataset(
        id=new_id(),
        name=f"{dataset.name}-{TRANSFORMED_TAG}",
        source=dataset.source,
        format=dataset.format,
        schema=infer_schema(rows),
        metadata=DatasetMetadata(
            created_at=now,
            updated_at=now,
            row_count=len(rows),
            size_bytes=serialized_size(rows),
            checksum=checksum(rows),
            tags=[*dataset.metadata.tags, TRANSFORMED_TAG],
        ),
        rows=rows,
        location=dataset.location,
    )


class TransformationPipeline:
    kind = "transformation"

    def __init__(self, context: PipelineContext) -> None:
        self.context = context

    async def run(
        self,
        dataset: Dataset,
        rules: list[TransformRule],
        *,
        in_place: bool = False,
        parallel: bool = False,
    ) -> Dataset:
        # sorted() is stable, so rules sharing an order keep their given sequence.
        ordered = sorted(rules, key=lambda rule: rule.order)
        execution = self.context.begin(
            self.kind,
            total=len(ordered),
            payload={"dataset_id": dataset.id, "rules": ordered},
        )
        logger.info(
            "starting data transformation",
            extra={"execution_id": execution.id, "dataset_id": dataset.id, "rule_count": len(ordered)},
        )
        if parallel:
            logger.debug("rules run sequentially; parallel flag ignored", extra={"execution_id": execution.id})

        try:
            source_rows = dataset.rows or []
            rows = source_rows if in_place else copy.deepcopy(source_rows)
            rows_in = len(rows)

            for rule in ordered:
                before = len(rows)
                rows = await run_stage(execution, f"transform-{rule.type}", partial(apply_transform_rule, rows, rule))
                execution.stages[-1].metrics = {"rows_in": before, "rows_out": len(rows)}
                if in_place:
                    # Applied rules stay applied if a later rule fails.
                    refresh_rows(dataset, rows)

                execution.progress.current += 1
                self.context.report_progress(execution)

            if in_place:
                refresh_rows(dataset, rows)
                result = dataset
            else:
                result = derive_dataset(dataset, rows)
                self.context.datasets.put(result)

            metrics = {"rules_applied": len(ordered), "rows_in": rows_in, "rows_out": len(rows)}
            mark_execution_completed(
                execution,
                PipelineResults(dataset=result, transformation_metrics=metrics),
            )
            self.context.finish(execution, "completed", {"dataset": result})
            logger.info(
                "data transformation completed",
                extra={"execution_id": execution.id, "dataset_id": result.id, "in_place": in_place, **metrics},
            )
            return result
        except Exception as exc:
            mark_execution_failed(execution, exc)
            self.context.finish(execution, "failed", {"error": exc})
            logger.exception("data transformation failed", extra={"execution_id": execution.id})
            raise
        finally:
            self.context.tracker.evict(execution.id)
