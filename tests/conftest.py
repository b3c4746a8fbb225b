from typing import Any, Dict, List

import pytest

from pizza_service.config import Config
from pizza_service.db import Database, SQLiteConnection
from pizza_service.repository import Repository

TEST_SECRET = "test-secret-that-is-long-enough-for-hs256"


@pytest.fixture
def cfg(tmp_path) -> Config:
    return Config(
        DB_DSN=str(tmp_path / "pizza.sqlite"),
        DB_POOL_SIZE=4,
        LIST_PER_PAGE=10,
        AUTH_JWT_SECRET=TEST_SECRET,
        AUTH_BOOTSTRAP_ADMIN_NAME="常用名字",
        AUTH_BOOTSTRAP_ADMIN_EMAIL="a@jwt.com",
        AUTH_BOOTSTRAP_ADMIN_PASSWORD="admin",
        FACTORY_URL="https://factory.test",
        FACTORY_API_KEY="factory-key",
        CORS_ALLOW_ORIGINS="",
    )


@pytest.fixture
def db(cfg):
    d = Database(cfg)
    yield d
    d.close()


@pytest.fixture
def repo(db) -> Repository:
    return Repository(db)


@pytest.fixture
def admin(repo, cfg) -> Dict[str, Any]:
    return repo.get_user(cfg.AUTH_BOOTSTRAP_ADMIN_EMAIL)


@pytest.fixture
def diner(repo) -> Dict[str, Any]:
    return repo.add_user(
        {"name": "pizza diner", "email": "d@test.com", "password": "a", "roles": [{"role": "diner"}]}
    )


@pytest.fixture
def veggie(repo) -> Dict[str, Any]:
    return repo.add_menu_item(
        {"title": "Veggie", "description": "A garden of delight", "image": "pizza1.png", "price": 0.0038}
    )


@pytest.fixture
def statements(db, monkeypatch) -> List[str]:
    """SQL sent through the connection adapter after the schema exists."""
    db.ready()
    seen: List[str] = []
    original = SQLiteConnection.execute

    def recording(self, sql, params=None):
        seen.append(" ".join(sql.split()))
        return original(self, sql, params)

    monkeypatch.setattr(SQLiteConnection, "execute", recording)
    return seen


@pytest.fixture
def releases(db, monkeypatch) -> List[Any]:
    """Connections handed back to the pool."""
    db.ready()
    seen: List[Any] = []
    original = db.pool.release

    def counting(conn):
        seen.append(conn)
        original(conn)

    monkeypatch.setattr(db.pool, "release", counting)
    return seen


@pytest.fixture
def count_rows(db):
    def count(table: str) -> int:
        with db.connection() as conn:
            return int(conn.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()["n"])

    return count
