import logging

from sqlalchemy.orm import Session, sessionmaker

from pipeline_orchestrator.action_log import SqlActionLog
from pipeline_orchestrator.config import Settings
from pipeline_orchestrator.context import PipelineContext
from pipeline_orchestrator.deployment import DeploymentPipeline
from pipeline_orchestrator.errors import ValidationFailedError
from pipeline_orchestrator.ingestion import IngestionPipeline
from pipeline_orchestrator.ledger import ExecutionLedger
from pipeline_orchestrator.schemas import (
    DataFormat,
    DataSource,
    Dataset,
    DatasetPreview,
    DeploymentStatus,
    DeploymentTarget,
    PipelineExecution,
    PipelineResults,
    TransformRule,
    ValidationReport,
    ValidationSchema,
)
from pipeline_orchestrator.transformation import TransformationPipeline
from pipeline_orchestrator.validation import ValidationEngine


logger = logging.getLogger(__name__)


class DataPipelineOrchestrator:
    def __init__(self, context: PipelineContext | None = None) -> None:
        self.context = context or PipelineContext()
        self.ingestion = IngestionPipeline(self.context)
        self.transformation = TransformationPipeline(self.context)
        self.validation = ValidationEngine(self.context)
        self.deployment = DeploymentPipeline(self.context)

    @classmethod
    def from_settings(cls, settings: Settings, **collaborators) -> "DataPipelineOrchestrator":
        context = PipelineContext(
            validation_progress_interval=settings.validation_progress_interval,
            default_batch_size=settings.default_batch_size,
            **collaborators,
        )
        return cls(context)

    async def ingest(
        self,
        source: DataSource,
        data_format: DataFormat,
        *,
        name: str | None = None,
        batch_size: int | None = None,
        parallel: bool = False,
    ) -> Dataset:
        return await self.ingestion.run(source, data_format, name=name, batch_size=batch_size, parallel=parallel)

    async def transform(
        self,
        dataset: Dataset,
        rules: list[TransformRule],
        *,
        in_place: bool = False,
        parallel: bool = False,
    ) -> Dataset:
        return await self.transformation.run(dataset, rules, in_place=in_place, parallel=parallel)

    async def validate(self, dataset: Dataset, schema: ValidationSchema) -> ValidationReport:
        return await self.validation.run(dataset, schema)

    async def deploy(
        self,
        dataset: Dataset,
        target: DeploymentTarget,
        *,
        batch_size: int | None = None,
        overwrite: bool = False,
        dry_run: bool = False,
    ) -> DeploymentStatus:
        return await self.deployment.run(
            dataset,
            target,
            batch_size=batch_size,
            overwrite=overwrite,
            dry_run=dry_run,
        )

    async def execute_pipeline(
        self,
        source: DataSource,
        data_format: DataFormat,
        transform_rules: list[TransformRule],
        validation_schema: ValidationSchema,
        target: DeploymentTarget,
        *,
        name: str | None = None,
        stop_on_validation_error: bool = False,
    ) -> PipelineResults:
        logger.info("executing full data pipeline", extra={"source_type": source.type, "target_type": target.type})
        try:
            dataset = await self.ingest(source, data_format, name=name)
            transformed = await self.transform(dataset, transform_rules)
            report = await self.validate(transformed, validation_schema)

            if not report.valid and stop_on_validation_error:
                raise ValidationFailedError(report)

            deployment_status = await self.deploy(transformed, target)
        except Exception:
            logger.exception("pipeline execution failed", extra={"source_type": source.type})
            raise

        return PipelineResults(
            dataset=transformed,
            validation_report=report,
            deployment_status=deployment_status,
        )

    def get_active_executions(self) -> list[PipelineExecution]:
        return self.context.tracker.active()

    def get_execution(self, execution_id: str) -> PipelineExecution | None:
        return self.context.tracker.get(execution_id)

    def get_dataset(self, dataset_id: str) -> Dataset | None:
        return self.context.datasets.get(dataset_id)

    def list_datasets(self) -> list[Dataset]:
        return self.context.datasets.list()

    def delete_dataset(self, dataset_id: str) -> bool:
        return self.context.datasets.delete(dataset_id)

    def preview_dataset(self, dataset_id: str, limit: int = 10) -> DatasetPreview | None:
        dataset = self.get_dataset(dataset_id)
        if dataset is None:
            return None
        return DatasetPreview(
            dataset_id=dataset.id,
            rows=list((dataset.rows or [])[: max(limit, 0)]),
            total_rows=dataset.metadata.row_count,
            schema=dataset.schema,
        )


def build_orchestrator(settings: Settings, session_factory: sessionmaker[Session]) -> DataPipelineOrchestrator:
    orchestrator = DataPipelineOrchestrator.from_settings(settings, action_log=SqlActionLog(session_factory))
    ExecutionLedger(session_factory).attach(orchestrator.context.events)
    return orchestrator
