import asyncio
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from pipeline_orchestrator.db_models import ExecutionRecord, StageRecord
from pipeline_orchestrator.events import WILDCARD, EventBus
from pipeline_orchestrator.schemas import PipelineExecution


logger = logging.getLogger(__name__)

TERMINAL_SUFFIXES = (":completed", ":failed")


class ExecutionLedger:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def attach(self, bus: EventBus):
        return bus.subscribe(WILDCARD, self.on_event)

    async def on_event(self, event: str, payload: dict[str, Any]) -> None:
        if not event.endswith(TERMINAL_SUFFIXES):
            return
        execution = payload.get("execution")
        if not isinstance(execution, PipelineExecution):
            return
        await asyncio.to_thread(self.record, execution)

    def record(self, execution: PipelineExecution) -> None:
        with self.session_factory() as db:
            row = ExecutionRecord(
                execution_id=execution.id,
                pipeline_kind=execution.pipeline_kind,
                status=execution.status,
                started_at=execution.started_at,
                completed_at=execution.completed_at,
                progress_current=execution.progress.current,
                progress_total=execution.progress.total,
                error=str(execution.error) if execution.error else None,
            )
            for position, stage in enumerate(execution.stages):
                row.stages.append(
                    StageRecord(
                        position=position,
                        name=stage.name,
                        status=stage.status,
                        started_at=stage.started_at,
                        completed_at=stage.completed_at,
                        duration_ms=stage.duration_ms,
                        error=str(stage.error) if stage.error else None,
                    )
                )
            db.add(row)
            db.commit()
        logger.debug("execution recorded", extra={"execution_id": execution.id, "status": execution.status})

    def history(self, pipeline_kind: str | None = None) -> list[ExecutionRecord]:
        stmt = select(ExecutionRecord).options(selectinload(ExecutionRecord.stages)).order_by(ExecutionRecord.id)
        if pipeline_kind is not None:
            stmt = stmt.where(ExecutionRecord.pipeline_kind == pipeline_kind)
        with self.session_factory() as db:
            return list(db.execute(stmt).scalars().all())
