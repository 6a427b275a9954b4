from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pipeline_orchestrator.db_models import Base


def build_session_factory(database_url: str) -> sessionmaker[Session]:
    engine_options: dict[str, object] = {"future": True}
    if database_url.startswith("sqlite"):
        engine_options["connect_args"] = {"check_same_thread": False}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            # Share the single in-memory database across sessions and threads.
            engine_options["poolclass"] = StaticPool

    engine = create_engine(database_url, **engine_options)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)
