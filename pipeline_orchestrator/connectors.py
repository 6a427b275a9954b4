import asyncio
import json
import logging
from pathlib import Path
import threading
from typing import Any, Protocol

from sqlalchemy import delete
from sqlalchemy.orm import Session, sessionmaker

from pipeline_orchestrator.database import build_session_factory
from pipeline_orchestrator.db_models import DeployedRecord
from pipeline_orchestrator.errors import ConnectorNotFoundError
from pipeline_orchestrator.schemas import DataFormat, DataSource, Dataset, DeploymentTarget, Row


logger = logging.getLogger(__name__)

INLINE_LOCATION = "inline"


class SourceConnector(Protocol):
    async def connect(self, source: DataSource) -> Any: ...

    async def read(
        self,
        source: DataSource,
        data_format: DataFormat,
        connection: Any,
        *,
        batch_size: int | None = None,
    ) -> Any: ...


class TargetConnector(Protocol):
    async def connect(self, target: DeploymentTarget) -> Any: ...

    async def prepare(self, dataset: Dataset, target: DeploymentTarget) -> list[Row]: ...

    async def write(
        self,
        dataset: Dataset,
        rows: list[Row],
        target: DeploymentTarget,
        connection: Any,
        *,
        batch_size: int,
        overwrite: bool,
    ) -> int: ...


class InlineSourceConnector:
    async def connect(self, source: DataSource) -> Any:
        return {"connected": True}

    async def read(
        self,
        source: DataSource,
        data_format: DataFormat,
        connection: Any,
        *,
        batch_size: int | None = None,
    ) -> Any:
        if source.content is None:
            raise ValueError("inline source has no content")
        return source.content


class FileSourceConnector:
    async def connect(self, source: DataSource) -> Path:
        path = Path(source.location)
        if not path.exists():
            raise FileNotFoundError(f"input file not found: {path}")
        return path

    async def read(
        self,
        source: DataSource,
        data_format: DataFormat,
        connection: Path,
        *,
        batch_size: int | None = None,
    ) -> str:
        return await asyncio.to_thread(connection.read_text, encoding=data_format.encoding)


class FileTargetConnector:
    async def connect(self, target: DeploymentTarget) -> Path:
        path = Path(target.location)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    async def prepare(self, dataset: Dataset, target: DeploymentTarget) -> list[Row]:
        return list(dataset.rows or [])

    async def write(
        self,
        dataset: Dataset,
        rows: list[Row],
        target: DeploymentTarget,
        connection: Path,
        *,
        batch_size: int,
        overwrite: bool,
    ) -> int:
        await asyncio.to_thread(write_jsonl, connection, rows, append=not overwrite)
        return len(rows)


class SqlTargetConnector:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._session_factories: dict[str, sessionmaker[Session]] = {}

    async def connect(self, target: DeploymentTarget) -> sessionmaker[Session]:
        return await asyncio.to_thread(self.session_factory_for, target.location)

    def session_factory_for(self, database_url: str) -> sessionmaker[Session]:
        # One engine per URL; repeated deploys share its pool and, for in-memory URLs, its data.
        with self._lock:
            factory = self._session_factories.get(database_url)
            if factory is None:
                factory = build_session_factory(database_url)
                self._session_factories[database_url] = factory
            return factory

    def dispose(self) -> None:
        with self._lock:
            factories = list(self._session_factories.values())
            self._session_factories.clear()
        for factory in factories:
            factory.kw["bind"].dispose()

    async def prepare(self, dataset: Dataset, target: DeploymentTarget) -> list[Row]:
        return list(dataset.rows or [])

    async def write(
        self,
        dataset: Dataset,
        rows: list[Row],
        target: DeploymentTarget,
        connection: sessionmaker[Session],
        *,
        batch_size: int,
        overwrite: bool,
    ) -> int:
        return await asyncio.to_thread(
            store_deployed_records,
            connection,
            dataset_id=dataset.id,
            rows=rows,
            batch_size=batch_size,
            overwrite=overwrite,
        )


def write_jsonl(path: Path, rows: list[Row], *, append: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a" if append else "w", encoding="utf-8") as outfile:
        for row in rows:
            outfile.write(json.dumps(row, sort_keys=True, default=str))
            outfile.write("\n")


def store_deployed_records(
    session_factory: sessionmaker[Session],
    *,
    dataset_id: str,
    rows: list[Row],
    batch_size: int,
    overwrite: bool,
) -> int:
    with session_factory() as db:
        if overwrite:
            db.execute(delete(DeployedRecord).where(DeployedRecord.dataset_id == dataset_id))
            db.commit()

        size = max(batch_size, 1)
        for start in range(0, len(rows), size):
            batch = rows[start : start + size]
            for offset, row in enumerate(batch):
                db.add(
                    DeployedRecord(
                        dataset_id=dataset_id,
                        record_index=start + offset,
                        payload=json.dumps(row, sort_keys=True, default=str),
                    )
                )
            # One commit per batch keeps partial deployments visible.
            db.commit()
    return len(rows)


class ConnectorRegistry:
    def __init__(self) -> None:
        self._sources: dict[str, SourceConnector] = {}
        self._targets: dict[str, TargetConnector] = {}

    def register_source(self, source_type: str, connector: SourceConnector) -> None:
        self._sources[source_type] = connector

    def register_target(self, target_type: str, connector: TargetConnector) -> None:
        self._targets[target_type] = connector

    def source_for(self, source: DataSource) -> SourceConnector:
        key = INLINE_LOCATION if source.location == INLINE_LOCATION else source.type
        try:
            return self._sources[key]
        except KeyError:
            raise ConnectorNotFoundError(f"no source connector registered for '{key}'") from None

    def target_for(self, target: DeploymentTarget) -> TargetConnector:
        try:
            return self._targets[target.type]
        except KeyError:
            raise ConnectorNotFoundError(f"no target connector registered for '{target.type}'") from None

    def close(self) -> None:
        for connector in [*self._sources.values(), *self._targets.values()]:
            dispose = getattr(connector, "dispose", None)
            if dispose is not None:
                dispose()


def default_registry() -> ConnectorRegistry:
    registry = ConnectorRegistry()
    registry.register_source(INLINE_LOCATION, InlineSourceConnector())
    registry.register_source("file", FileSourceConnector())
    registry.register_target("file", FileTargetConnector())
    registry.register_target("database", SqlTargetConnector())
    return registry
