# tests/conftest.py

import os

# Must be in place before studio_config builds its engine. load_dotenv never
# overrides variables that are already set, so empty values stay empty.
os.environ["DATABASE_URL"] = "sqlite://"
for _name in ("CLERK_JWKS_URL", "CLERK_ISSUER", "CLERK_SECRET_KEY", "GEMINI_API_KEY", "FREEPIK_API_KEYS", "FREEPIK_API_KEY"):
    os.environ[_name] = ""

import jwt
import pytest
from fastapi.testclient import TestClient

import conversation_store
import studio_config
import studio_models  # noqa: F401
import studio_user_service
from studio_config import Base, SessionLocal, engine

from .fakes import FakeClock


@pytest.fixture(autouse=True)
def _fresh_database():
    Base.metadata.create_all(bind=engine)
    conversation_store._memory_store = None
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def app():
    import studio_server

    return studio_server.app


@pytest.fixture()
def client(app):
    return TestClient(app)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


def make_token(user_id: str = "user_2abcdefgh", plan: str | None = None) -> str:
    claims = {"sub": user_id}
    if plan:
        claims["pla"] = f"u:{plan}"
    return jwt.encode(claims, studio_user_service.SECRET_KEY, algorithm="HS256")


@pytest.fixture()
def auth_headers():
    def _headers(user_id: str = "user_2abcdefgh", plan: str | None = None) -> dict:
        return {"Authorization": f"Bearer {make_token(user_id, plan)}"}

    return _headers

