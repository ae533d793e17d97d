"""
Shared fixtures.

The service runs in-process against a throwaway SQLite file; environment
overrides must be in place before anything under canteen is imported.
"""
import os
import tempfile
import uuid
from dataclasses import dataclass, field

DB_PATH = os.path.join(tempfile.gettempdir(), f"canteen-orders-test-{os.getpid()}.db")
JWT_SECRET = "test-secret"

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{DB_PATH}"
os.environ["JWT_SECRET_KEY"] = JWT_SECRET
os.environ["BROADCAST_BACKEND"] = "memory"
os.environ["METRICS_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

import httpx
import pytest
import pytest_asyncio
from jose import jwt

from canteen.core.security import Actor
from canteen.db.database import SessionLocal
from canteen.main import app
from canteen.models.menu import MenuItem
from canteen.models.user import Role, User

MANAGER_UPI = "canteen@upi"


def make_token(user_id: str, role: str, manager_id: str | None = None) -> str:
    claims = {"sub": user_id, "role": role}
    if manager_id:
        claims["manager_id"] = manager_id
    return jwt.encode(claims, JWT_SECRET, algorithm="HS256")


def auth(user_id: str, role: str, manager_id: str | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id, role, manager_id)}"}


class Recorder:
    """Stands in for a WebSocket connection inside a room."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        self.messages: list[dict] = []

    def enqueue(self, message: dict) -> bool:
        self.messages.append(message)
        return True

    def events(self, name: str | None = None) -> list[dict]:
        return [m["data"] for m in self.messages if name is None or m["event"] == name]


@dataclass
class Canteen:
    manager_id: str
    student_id: str
    other_student_id: str
    other_manager_id: str
    dosa_id: str
    coffee_id: str
    foreign_item_id: str
    rows: list = field(default_factory=list, repr=False)

    @property
    def manager(self) -> Actor:
        return Actor(id=self.manager_id, role=Role.MANAGER)

    @property
    def other_manager(self) -> Actor:
        return Actor(id=self.other_manager_id, role=Role.MANAGER)

    @property
    def student(self) -> Actor:
        return Actor(id=self.student_id, role=Role.STUDENT, manager_id=self.manager_id)

    @property
    def other_student(self) -> Actor:
        return Actor(id=self.other_student_id, role=Role.STUDENT, manager_id=self.manager_id)

    @property
    def manager_headers(self) -> dict[str, str]:
        return auth(self.manager_id, "manager")

    @property
    def student_headers(self) -> dict[str, str]:
        return auth(self.student_id, "student", self.manager_id)

    @property
    def other_student_headers(self) -> dict[str, str]:
        return auth(self.other_student_id, "student", self.manager_id)


def build_canteen() -> Canteen:
    """Fresh ids per test, so tests never see each other's rows."""
    ids = {name: str(uuid.uuid4()) for name in ("manager", "student", "other_student", "other_manager",
                                               "dosa", "coffee", "foreign")}
    rows = [
        User(id=ids["manager"], name="Canteen Manager", email=f"{ids['manager']}@example.edu",
             role=Role.MANAGER, upi_id=MANAGER_UPI),
        User(id=ids["other_manager"], name="Other Manager", email=f"{ids['other_manager']}@example.edu",
             role=Role.MANAGER, upi_id="other@upi"),
        User(id=ids["student"], name="Asha", email=f"{ids['student']}@example.edu",
             role=Role.STUDENT, manager_id=ids["manager"]),
        User(id=ids["other_student"], name="Ravi", email=f"{ids['other_student']}@example.edu",
             role=Role.STUDENT, manager_id=ids["manager"]),
        MenuItem(id=ids["dosa"], manager_id=ids["manager"], name="Masala Dosa", price=6000, discount=500),
        MenuItem(id=ids["coffee"], manager_id=ids["manager"], name="Filter Coffee", price=2000),
        MenuItem(id=ids["foreign"], manager_id=ids["other_manager"], name="Veg Thali", price=9000),
    ]
    return Canteen(
        manager_id=ids["manager"],
        student_id=ids["student"],
        other_student_id=ids["other_student"],
        other_manager_id=ids["other_manager"],
        dosa_id=ids["dosa"],
        coffee_id=ids["coffee"],
        foreign_item_id=ids["foreign"],
        rows=rows,
    )


@pytest.fixture(scope="session", autouse=True)
def _database_file():
    yield
    if os.path.exists(DB_PATH):
        os.remove(DB_PATH)


@pytest_asyncio.fixture
async def app_state():
    async with app.router.lifespan_context(app):
        yield app.state


@pytest_asyncio.fixture
async def client(app_state):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def canteen(app_state) -> Canteen:
    data = build_canteen()
    async with SessionLocal() as db:
        db.add_all(data.rows)
        await db.commit()
    return data


@pytest.fixture
def listen(app_state):
    """Join a recorder to a user's room: recorder = listen(user_id)."""
    def _listen(user_id: str) -> Recorder:
        recorder = Recorder(user_id)
        app_state.rooms.join(recorder, user_id)
        return recorder
    return _listen


@pytest_asyncio.fixture
async def session(app_state):
    async with SessionLocal() as db:
        yield db
