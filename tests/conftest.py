from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
import sys

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from crm import main
from crm.database import Base


@pytest.fixture()
def client_and_engine(tmp_path):
    db_path = tmp_path / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def register_now(dbapi_conn, _):
        dbapi_conn.create_function("NOW", 0, lambda: datetime.utcnow().isoformat(sep=" "))

    SessionTesting = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = SessionTesting()
        try:
            yield db
        finally:
            db.close()

    original_startup = list(main.app.router.on_startup)
    original_shutdown = list(main.app.router.on_shutdown)
    original_lifespan = main.app.router.lifespan_context

    @asynccontextmanager
    async def _noop_lifespan(_app):
        yield

    main.app.router.on_startup = []
    main.app.router.on_shutdown = []
    main.app.router.lifespan_context = _noop_lifespan
    main.app.dependency_overrides[main.get_db] = override_get_db

    client = TestClient(main.app)
    try:
        yield client, engine
    finally:
        client.close()
        main.app.dependency_overrides.clear()
        main.app.router.on_startup = original_startup
        main.app.router.on_shutdown = original_shutdown
        main.app.router.lifespan_context = original_lifespan
        engine.dispose()
