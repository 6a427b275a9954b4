import logging

from pipeline_orchestrator.context import PipelineContext
from pipeline_orchestrator.run_store import mark_execution_completed, mark_execution_failed
from pipeline_orchestrator.schemas import (
    Dataset,
    PipelineExecution,
    PipelineResults,
    ValidationReport,
    ValidationSchema,
    ValidationSummary,
    ValidationViolation,
    ValidationWarning,
)
from pipeline_orchestrator.stage import run_stage
from pipeline_orchestrator.step_logic import evaluate_rule


logger = logging.getLogger(__name__)


def is_report_valid(report: ValidationReport, schema: ValidationSchema) -> bool:
    error_count = len(report.errors)
    if error_count == 0:
        return True
    if schema.error_handling == "stop":
        return False
    return schema.max_errors is None or error_count <= schema.max_errors


class ValidationEngine:
    kind = "validation"

    def __init__(self, context: PipelineContext) -> None:
        self.context = context

    async def run(self, dataset: Dataset, schema: ValidationSchema) -> ValidationReport:
        total = dataset.metadata.row_count
        execution = self.context.begin(
            self.kind,
            total=total,
            payload={"dataset_id": dataset.id, "schema": schema},
        )
        logger.info(
            "starting data validation",
            extra={"execution_id": execution.id, "dataset_id": dataset.id, "rule_count": len(schema.rules)},
        )

        try:
            report = await run_stage(execution, "scan", lambda: self._scan(execution, dataset, schema))
            execution.stages[-1].metrics = {
                "rows_scanned": execution.progress.current,
                "errors": len(report.errors),
                "warnings": len(report.warnings),
            }

            mark_execution_completed(execution, PipelineResults(dataset=dataset, validation_report=report))
            self.context.finish(execution, "completed", {"report": report})
            logger.info(
                "data validation completed",
                extra={
                    "execution_id": execution.id,
                    "dataset_id": dataset.id,
                    "valid": report.valid,
                    "valid_records": report.summary.valid_records,
                    "invalid_records": report.summary.invalid_records,
                    "skipped_records": report.summary.skipped_records,
                },
            )
            return report
        except Exception as exc:
            mark_execution_failed(execution, exc)
            self.context.finish(execution, "failed", {"error": exc})
            logger.exception("data validation failed", extra={"execution_id": execution.id})
            raise
        finally:
            self.context.tracker.evict(execution.id)

    async def _scan(
        self,
        execution: PipelineExecution,
        dataset: Dataset,
        schema: ValidationSchema,
    ) -> ValidationReport:
        report = ValidationReport(summary=ValidationSummary(total_records=dataset.metadata.row_count))
        interval = max(self.context.validation_progress_interval, 1)

        for index, row in enumerate(dataset.rows or []):
            row_errors: list[ValidationViolation] = []
            row_warnings: list[ValidationWarning] = []
            for rule in schema.rules:
                violation = await evaluate_rule(row, rule, index)
                if violation is None:
                    continue
                if rule.severity == "error":
                    row_errors.append(violation)
                else:
                    row_warnings.append(
                        ValidationWarning(
                            message=violation.message,
                            severity=rule.severity,
                            row=index,
                            field=violation.field,
                        )
                    )

            execution.progress.current = index + 1

            if not row_errors:
                report.summary.valid_records += 1
            else:
                report.errors.extend(row_errors)
                report.summary.invalid_records += 1
                if schema.error_handling == "stop":
                    # Warnings of the row that halts the scan are not reported.
                    report.valid = False
                    logger.info(
                        "validation stopped at first invalid record",
                        extra={"execution_id": execution.id, "row": index},
                    )
                    break
                if schema.error_handling == "skip":
                    report.summary.skipped_records += 1
                else:
                    logger.warning(
                        "invalid record",
                        extra={
                            "execution_id": execution.id,
                            "row": index,
                            "reasons": [error.message for error in row_errors],
                        },
                    )

            report.warnings.extend(row_warnings)

            if index % interval == 0:
                self.context.report_progress(execution)

        report.valid = is_report_valid(report, schema)
        return report
