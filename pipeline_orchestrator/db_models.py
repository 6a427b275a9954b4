from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from pipeline_orchestrator.schemas import utc_now


class Base(DeclarativeBase):
    pass


class ActionLogEntry(Base):
    __tablename__ = "action_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agent: Mapped[str] = mapped_column(String(64), index=True)
    system_targeted: Mapped[str] = mapped_column(String(64))
    action_type: Mapped[str] = mapped_column(String(32))
    record_affected: Mapped[str] = mapped_column(String(64), index=True)
    payload_summary: Mapped[str] = mapped_column(Text)
    response_confirmation: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(32))
    logged_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class ExecutionRecord(Base):
    __tablename__ = "pipeline_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    execution_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    pipeline_kind: Mapped[str] = mapped_column(String(32), index=True)
    status: Mapped[str] = mapped_column(String(32))
    started_at: Mapped[datetime] = mapped_column(DateTime)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    progress_current: Mapped[int] = mapped_column(Integer, default=0)
    progress_total: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    stages: Mapped[list["StageRecord"]] = relationship(
        back_populates="execution",
        cascade="all, delete-orphan",
        order_by="StageRecord.position",
    )


class StageRecord(Base):
    __tablename__ = "stage_executions"
    __table_args__ = (UniqueConstraint("execution_pk", "position", name="uq_stage_position"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    execution_pk: Mapped[int] = mapped_column(ForeignKey("pipeline_executions.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(32))
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    duration_ms: Mapped[float | None] = mapped_column(Float, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    execution: Mapped[ExecutionRecord] = relationship(back_populates="stages")


class DeployedRecord(Base):
    __tablename__ = "deployed_records"
    __table_args__ = (UniqueConstraint("dataset_id", "record_index", name="uq_dataset_record_index"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dataset_id: Mapped[str] = mapped_column(String(64), index=True)
    record_index: Mapped[int] = mapped_column(Integer)
    payload: Mapped[str] = mapped_column(Text)
