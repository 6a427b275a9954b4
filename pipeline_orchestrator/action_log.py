import asyncio
from dataclasses import asdict
import json
import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from pipeline_orchestrator.db_models import ActionLogEntry
from pipeline_orchestrator.schemas import ActionRecord


logger = logging.getLogger(__name__)

PIPELINE_AGENT = "data-pipeline"


class ActionLog(Protocol):
    async def record(self, action: ActionRecord) -> None: ...


class LoggingActionLog:
    async def record(self, action: ActionRecord) -> None:
        logger.info(
            "action logged",
            extra={
                "agent": action.agent,
                "action_type": action.action_type,
                "system_targeted": action.system_targeted,
                "record_affected": action.record_affected,
            },
        )


class SqlActionLog:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    async def record(self, action: ActionRecord) -> None:
        await asyncio.to_thread(self._store, action)

    def _store(self, action: ActionRecord) -> None:
        fields = asdict(action)
        fields["payload_summary"] = json.dumps(action.payload_summary, sort_keys=True, default=str)
        with self.session_factory() as db:
            db.add(ActionLogEntry(**fields))
            db.commit()

    def entries_for(self, record_affected: str) -> list[ActionLogEntry]:
        stmt = (
            select(ActionLogEntry)
            .where(ActionLogEntry.record_affected == record_affected)
            .order_by(ActionLogEntry.id)
        )
        with self.session_factory() as db:
            return list(db.execute(stmt).scalars().all())


def success_action(
    *,
    system_targeted: str,
    record_affected: str,
    payload_summary: dict[str, object],
    response_confirmation: str,
) -> ActionRecord:
    return ActionRecord(
        agent=PIPELINE_AGENT,
        system_targeted=system_targeted,
        action_type="Write",
        record_affected=record_affected,
        payload_summary=payload_summary,
        response_confirmation=response_confirmation,
        status="success",
    )
