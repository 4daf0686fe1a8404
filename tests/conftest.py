import os
import tempfile
from datetime import datetime, timedelta

# Settings are read at import time, so they go in before any app module loads
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["ADMIN_PASSWORD"] = "test-admin"
os.environ.setdefault("UPLOADS_DIR", tempfile.mkdtemp(prefix="listings-uploads-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update
from sqlmodel import SQLModel, Session, create_engine

from db import get_session
from images import LocalImageStore, get_image_store
from lifecycle import ListingEngine
from models import Product
from sweeper import Sweeper

PRODUCT_DATA = {
    "name": "Wooden chair",
    "contact": "+252 61 555 0100",
    "email": "donor@gmail.com",
    "country": "Somalia",
    "city": "Mogadishu",
    "district": "Hodan",
    "description": "Sturdy, lightly used",
}


class FakeClock:
    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def set_fields(db_engine, product_id, **values) -> None:
    """Force stored fields, bypassing the engine."""
    with Session(db_engine) as session:
        session.exec(update(Product).where(Product.id == product_id).values(**values))
        session.commit()


def load(db_engine, product_id):
    with Session(db_engine) as session:
        return session.get(Product, product_id)


@pytest.fixture
def db_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'listings.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(db_engine):
    with Session(db_engine) as session:
        yield session


@pytest.fixture
def session_factory(db_engine):
    return lambda: Session(db_engine)


@pytest.fixture
def images(tmp_path):
    return LocalImageStore(str(tmp_path / "uploads"), "/uploads")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(session, images, clock):
    return ListingEngine(session, images, clock=clock)


@pytest.fixture
def sweeper(session_factory, images, clock):
    return Sweeper(session_factory, images, clock=clock)


@pytest.fixture
def submit(engine, images, clock):
    """Submit a listing; each call is one second after the previous one."""

    def _submit(donor_id: str = "donor-1", **overrides) -> Product:
        clock.advance(seconds=1)
        image = images.save(b"\xff\xd8\xff\xe0fake-jpeg", "chair.jpg")
        return engine.submit({**PRODUCT_DATA, **overrides}, image, donor_id)

    return _submit


@pytest.fixture
def available(submit, engine):
    return engine.approve(submit().id)


@pytest.fixture
def requested(available, engine):
    return engine.request(available.id, "recipient-1")


@pytest.fixture
def client(db_engine, images, clock, sweeper):
    from main import app
    from routers.admin import get_sweeper
    from routers.products import get_clock

    def get_test_session():
        with Session(db_engine) as session:
            yield session

    app.dependency_overrides[get_session] = get_test_session
    app.dependency_overrides[get_image_store] = lambda: images
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_sweeper] = lambda: sweeper

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def admin_client(client):
    response = client.post("/admin/login", data={"password": "test-admin"})
    assert response.status_code == 200
    return client
