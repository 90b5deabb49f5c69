"""
Shared fixtures: a fresh SQLite database per test, data builders, and a
fake WebSocket for driving the realtime hub without a server.
"""

import asyncio
import json
import os
import tempfile
from datetime import datetime, timezone

# Keep logs and the default database out of the source tree.
_scratch = tempfile.mkdtemp(prefix="taskhub-tests-")
os.environ.setdefault("TASKHUB_LOG_DIR", os.path.join(_scratch, "logs"))
os.environ.setdefault("TASKHUB_DATABASE_URL", f"sqlite:///{os.path.join(_scratch, 'default.db')}")

import pytest
from sqlalchemy.orm import sessionmaker
from starlette.websockets import WebSocketState

import database
from models import DocumentComment, Task, TaskActivity, User


@pytest.fixture
def engine(tmp_path):
    engine = database.make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    database.init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def app_client(engine, session_factory, monkeypatch):
    """TestClient running the full app (lifespan included) on the test database."""
    from fastapi.testclient import TestClient

    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(database, "SessionLocal", session_factory)

    import main

    with TestClient(main.app) as client:
        yield client


# ------------------------------------------------------------------
# Data builders
# ------------------------------------------------------------------

def make_user(db, username, role="team_member", full_name=None):
    user = User(username=username, role=role, full_name=full_name or username.title())
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_task(db, assignee, status="pending", deadline=None, completed_at=None, title="Write report", **extra):
    task = Task(
        title=title,
        assigned_to=assignee.id,
        status=status,
        deadline=deadline,
        completed_at=completed_at,
        **extra,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def make_comment(db, user, content="Looks good"):
    comment = DocumentComment(user_id=user.id, content=content)
    db.add(comment)
    db.commit()
    return comment


def make_activity(db, user, task, action="Status changed from pending to in_progress"):
    activity = TaskActivity(task_id=task.id, user_id=user.id, action=action)
    db.add(activity)
    db.commit()
    return activity


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


# ------------------------------------------------------------------
# Fake WebSocket
# ------------------------------------------------------------------

class FakeWebSocket:
    """
    Enough of starlette's WebSocket for the hub: frames pushed in with
    ``push`` are received in order, everything sent is decoded into ``sent``.
    """

    def __init__(self, fail_sends=False):
        self.client_state = WebSocketState.CONNECTING
        self.application_state = WebSocketState.CONNECTING
        self.incoming = asyncio.Queue()
        self.sent = []
        self.close_code = None
        self.fail_sends = fail_sends

    async def accept(self):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def receive(self):
        return await self.incoming.get()

    async def send_text(self, data):
        if self.fail_sends:
            raise RuntimeError("connection reset by peer")
        self.sent.append(json.loads(data))

    async def close(self, code=1000):
        self.close_code = code
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    def push(self, frame):
        text = frame if isinstance(frame, str) else json.dumps(frame)
        self.incoming.put_nowait({"type": "websocket.receive", "text": text})

    def hang_up(self, code=1000):
        self.client_state = WebSocketState.DISCONNECTED
        self.incoming.put_nowait({"type": "websocket.disconnect", "code": code})

    def of_type(self, message_type):
        return [message for message in self.sent if message.get("type") == message_type]


async def wait_until(condition, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
