"""
Pytest configuration and shared fixtures for the collaboration server tests.

Every test gets its own SQLite database file, a controllable clock and a
recording stand-in for the Socket.IO server so that every emit can be asserted
per recipient.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set

import pytest
import pytest_asyncio

from formsync.collaboration.server import CollaborationServer
from formsync.core.config import Settings
from formsync.core.security import create_access_token
from formsync.db.database import close_db, create_engine_for_url, init_db
from formsync.models import FieldType, UserRole

SHARE_CODE = "ABC123"
GROUP_NAME = "Team Alpha"
FORM_TITLE = "Trip registration"

FORM_FIELDS = [
    {"id": "name", "label": "Name", "type": FieldType.TEXT, "required": True},
    {"id": "email", "label": "Email", "type": FieldType.EMAIL},
    {"id": "age", "label": "Age", "type": FieldType.NUMBER},
    {"id": "meals", "label": "Meals", "type": FieldType.CHECKBOX, "options": ["Breakfast", "Lunch", "Dinner"]},
]


class FakeClock:
    """Clock injected into the store; tests move time forward explicitly."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


@dataclass
class Emit:
    event: str
    data: Any
    recipients: Set[str]


class FakeSocketIO:
    """
    Records handlers and emits the way python-socketio's AsyncServer would
    route them: `to=sid` reaches one session, `room=` reaches every session in
    the room except `skip_sid`.
    """

    def __init__(self):
        self.handlers: Dict[str, Any] = {}
        self.rooms: Dict[str, List[str]] = defaultdict(list)
        self.emitted: List[Emit] = []

    def event(self, handler):
        self.handlers[handler.__name__] = handler
        return handler

    def on(self, event, handler=None):
        self.handlers[event] = handler
        return handler

    async def enter_room(self, sid, room, namespace=None):
        if sid not in self.rooms[room]:
            self.rooms[room].append(sid)

    async def leave_room(self, sid, room, namespace=None):
        if sid in self.rooms.get(room, []):
            self.rooms[room].remove(sid)

    def drop(self, sid):
        """Socket.IO removes a disconnected sid from all rooms before the disconnect handler runs."""
        for members in self.rooms.values():
            if sid in members:
                members.remove(sid)

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None, namespace=None, callback=None):
        target = to if to is not None else room
        if target in self.rooms:
            recipients = {sid for sid in self.rooms[target] if sid != skip_sid}
        else:
            recipients = {target} if target != skip_sid else set()
        self.emitted.append(Emit(event, data, recipients))

    def received(self, sid: str, event: str) -> List[Any]:
        return [emit.data for emit in self.emitted if emit.event == event and sid in emit.recipients]

    def clear(self):
        self.emitted.clear()


class FakeClient:
    """Drives the server through the handlers it registered with Socket.IO."""

    def __init__(self, sio: FakeSocketIO, sid: str, token: str):
        self.sio = sio
        self.sid = sid
        self.token = token

    async def connect(self, auth: Optional[Dict[str, Any]] = None, environ: Optional[Dict[str, Any]] = None):
        auth = {"token": self.token} if auth is None else auth
        return await self.sio.handlers["connect"](self.sid, environ or {}, auth)

    async def emit(self, event: str, data: Any = None):
        return await self.sio.handlers[event](self.sid, data)

    async def join(self, group_code: str = SHARE_CODE):
        return await self.emit("join-form", group_code)

    async def disconnect(self):
        self.sio.drop(self.sid)
        await self.sio.handlers["disconnect"](self.sid)

    def received(self, event: str) -> List[Any]:
        return self.sio.received(self.sid, event)


@dataclass
class Seed:
    form_id: str
    group_id: str
    share_code: str
    users: Dict[str, Any] = field(default_factory=dict)
    tokens: Dict[str, str] = field(default_factory=dict)


@pytest.fixture
def test_settings():
    return Settings(
        environment="test",
        error_log_dir=None,
        log_file=None,
        lock_lease_seconds=60,
        lock_sweep_interval_seconds=30,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sio():
    return FakeSocketIO()


@pytest.fixture
def database_url(tmp_path):
    # A file rather than :memory: so concurrent sessions share one database
    return f"sqlite+aiosqlite:///{tmp_path / 'formsync.db'}"


@pytest_asyncio.fixture
async def engine(database_url):
    engine = create_engine_for_url(database_url)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def server(test_settings, engine, sio, clock):
    return CollaborationServer(settings=test_settings, engine=engine, sio=sio, clock=clock)


@pytest.fixture
def store(server):
    return server.store


async def seed_database(store) -> Seed:
    users = {
        "alice": await store.create_user("alice@example.com", UserRole.ADMIN),
        "bob": await store.create_user("bob@example.com"),
        "carol": await store.create_user("carol@example.com"),
    }
    form = await store.create_form(FORM_TITLE, FORM_FIELDS, created_by_id=users["alice"].id)
    group = await store.create_group(form.id, GROUP_NAME, users["alice"].id, share_code=SHARE_CODE)

    return Seed(
        form_id=form.id,
        group_id=group.id,
        share_code=group.share_code,
        users=users,
        tokens={name: create_access_token({"sub": user.id}) for name, user in users.items()},
    )


@pytest_asyncio.fixture
async def seeded(store):
    return await seed_database(store)


@pytest_asyncio.fixture
async def group(store, seeded):
    return await store.get_group(seeded.share_code)


@pytest.fixture
def make_client(sio, seeded):
    counter = {"n": 0}

    def factory(user: str, sid: Optional[str] = None) -> FakeClient:
        counter["n"] += 1
        return FakeClient(sio, sid or f"{user}-sid-{counter['n']}", seeded.tokens[user])

    return factory


@pytest_asyncio.fixture
async def alice(make_client):
    client = make_client("alice")
    await client.connect()
    return client


@pytest_asyncio.fixture
async def bob(make_client):
    client = make_client("bob")
    await client.connect()
    return client
