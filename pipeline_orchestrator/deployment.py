from functools import partial
import logging
import time
from typing import Any

from pipeline_orchestrator.action_log import success_action
from pipeline_orchestrator.connectors import TargetConnector
from pipeline_orchestrator.context import PipelineContext
from pipeline_orchestrator.run_store import mark_execution_completed, mark_execution_failed
from pipeline_orchestrator.schemas import Dataset, DeploymentStatus, DeploymentTarget, PipelineResults
from pipeline_orchestrator.stage import run_stage


logger = logging.getLogger(__name__)


class DeploymentPipeline:
    kind = "deployment"

    def __init__(self, context: PipelineContext) -> None:
        self.context = context

    async def run(
        self,
        dataset: Dataset,
        target: DeploymentTarget,
        *,
        batch_size: int | None = None,
        overwrite: bool = False,
        dry_run: bool = False,
    ) -> DeploymentStatus:
        started = time.perf_counter()
        execution = self.context.begin(
            self.kind,
            total=dataset.metadata.row_count,
            payload={"dataset_id": dataset.id, "target": target},
        )
        logger.info(
            "starting data deployment",
            extra={
                "execution_id": execution.id,
                "dataset_id": dataset.id,
                "target_type": target.type,
                "environment": target.environment,
                "dry_run": dry_run,
            },
        )

        try:
            if dry_run:
                status = DeploymentStatus(
                    deployed=False,
                    target=target,
                    records_deployed=dataset.metadata.row_count,
                    deployment_time_ms=0,
                    rollback_available=False,
                )
                mark_execution_completed(execution, PipelineResults(dataset=dataset, deployment_status=status))
                self.context.finish(execution, "completed", {"status": status, "dry_run": True})
                return status

            connector: TargetConnector | None = None

            async def connect() -> Any:
                nonlocal connector
                connector = self.context.connectors.target_for(target)
                return await connector.connect(target)

            connection = await run_stage(execution, "connect", connect)
            rows = await run_stage(execution, "prepare", lambda: connector.prepare(dataset, target))
            records_deployed = await run_stage(
                execution,
                "deploy",
                partial(
                    connector.write,
                    dataset,
                    rows,
                    target,
                    connection,
                    batch_size=batch_size or self.context.default_batch_size,
                    overwrite=overwrite,
                ),
            )
            execution.progress.current = records_deployed

            status = DeploymentStatus(
                deployed=True,
                target=target,
                records_deployed=records_deployed,
                deployment_time_ms=(time.perf_counter() - started) * 1000,
                rollback_available=True,
            )
            mark_execution_completed(execution, PipelineResults(dataset=dataset, deployment_status=status))
            self.context.finish(execution, "completed", {"status": status, "dry_run": False})
            logger.info(
                "data deployment completed",
                extra={"execution_id": execution.id, "records_deployed": records_deployed},
            )

            await self.context.audit(
                success_action(
                    system_targeted="data-deployment",
                    record_affected=dataset.id,
                    payload_summary={
                        "target": target.type,
                        "environment": target.environment,
                        "records": records_deployed,
                    },
                    response_confirmation="Data deployed successfully",
                )
            )
            return status
        except Exception as exc:
            # Deployment reports failures through its return value instead of raising.
            mark_execution_failed(execution, exc)
            self.context.finish(execution, "failed", {"error": exc})
            logger.exception("data deployment failed", extra={"execution_id": execution.id})
            return DeploymentStatus(deployed=False, target=target, error=exc)
        finally:
            self.context.tracker.evict(execution.id)
