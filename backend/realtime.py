"""
Realtime update hub.

Owns the live WebSocket connections of one server process. Every connection
starts unauthenticated, becomes authenticated after a single handshake frame
carrying ``userId`` and ``username``, and from then on may send
``task_update`` and ``subscribe_team_performance`` messages. Task changes are
validated against the status transition table, written through the data
store and fanned out to every other open connection. Subscribers also get a
team-performance leaderboard on subscription and on every periodic tick.

All state lives on the hub instance and is only touched from the event loop,
so no locking is needed. The data store calls are the only suspension points
inside a message; two updates to the same task race and the last write wins.
"""

import asyncio
import logging
import math
import uuid
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError
from starlette.websockets import WebSocketState

import config
import crud
from schemas import (
    ActivityUser,
    ConnectedMessage,
    ErrorMessage,
    Handshake,
    MemberMetrics,
    MemberPerformance,
    SubscribeTeamPerformanceMessage,
    TaskActivityResponse,
    TaskUpdateEvent,
    TaskUpdateMessage,
    TeamMember,
    TeamPerformanceEvent,
    inbound_message_adapter,
)
from store import TaskStore

logger = logging.getLogger(__name__)

# Policy violation: the handshake frame was missing or malformed.
HANDSHAKE_FAILED_CLOSE_CODE = 1008


class ErrorCode(str, Enum):
    MESSAGE_PARSE_ERROR = "MESSAGE_PARSE_ERROR"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    DATABASE_ERROR = "DATABASE_ERROR"


@dataclass
class ClientConnection:
    id: str
    websocket: WebSocket
    user_id: int
    username: str


# ------------------------------------------------------------------
# TEAM PERFORMANCE
# ------------------------------------------------------------------

def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_member(
    tasks_completed: int,
    total_tasks: int,
    on_time_completed: int,
    comments: int,
    activities: int,
) -> MemberMetrics:
    """
    Weighted leaderboard score for one member.

    Weights: completed tasks 40, on-time rate 30, comments 15 (x10, capped
    at 100), collaboration 15. A member with no tasks counts as 100% on time.
    """
    if total_tasks > 0:
        on_time_rate = round_half_up(on_time_completed / total_tasks * 100)
    else:
        on_time_rate = 100

    collaboration_score = min(100, activities)
    total_score = round_half_up(
        (
            tasks_completed * 40
            + on_time_rate * 30
            + min(comments * 10, 100) * 15
            + collaboration_score * 15
        )
        / 100
    )

    return MemberMetrics(
        tasks_completed=tasks_completed,
        on_time_completion=on_time_rate,
        document_comments=comments,
        collaboration_score=collaboration_score,
        total_score=total_score,
    )


async def member_performance(store: TaskStore, member: TeamMember) -> MemberPerformance:
    completed, total, on_time, comments, activities = await asyncio.gather(
        store.count_completed_tasks(member.id),
        store.count_total_tasks(member.id),
        store.count_on_time_completed(member.id),
        store.count_comments(member.id),
        store.count_activities(member.id),
    )
    return MemberPerformance(
        id=member.id,
        username=member.username,
        full_name=member.full_name,
        role=member.role,
        metrics=score_member(completed, total, on_time, comments, activities),
    )


async def calculate_team_performance(store: TaskStore) -> List[MemberPerformance]:
    """
    Leaderboard over every team member. Members are computed concurrently;
    one that fails is logged and left out instead of failing the snapshot.
    """
    members = await store.list_team_members()
    results = await asyncio.gather(
        *(member_performance(store, member) for member in members),
        return_exceptions=True,
    )

    performance = []
    for member, result in zip(members, results):
        if isinstance(result, BaseException):
            logger.error(
                "Failed to compute performance for user %s: %s", member.id, result, exc_info=result
            )
            continue
        performance.append(result)
    return performance


# ------------------------------------------------------------------
# HUB
# ------------------------------------------------------------------

class RealtimeHub:
    def __init__(
        self,
        store: TaskStore,
        performance_interval: float = config.TEAM_PERFORMANCE_INTERVAL_SECONDS,
    ):
        self.store = store
        self.performance_interval = performance_interval
        self.pending: Dict[str, WebSocket] = {}
        self.clients: Dict[str, ClientConnection] = {}
        self.performance_subscribers: Set[str] = set()
        self._periodic_task: Optional[asyncio.Task] = None

    @property
    def connection_count(self) -> int:
        return len(self.clients)

    # -------------------------- lifecycle --------------------------

    async def start(self):
        if self._periodic_task is None:
            self._periodic_task = asyncio.create_task(self._run_periodic_broadcast())
            logger.info("Team performance broadcast every %ss", self.performance_interval)

    async def stop(self):
        task, self._periodic_task = self._periodic_task, None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
            logger.info("Team performance broadcast stopped")

    async def _run_periodic_broadcast(self):
        while True:
            await asyncio.sleep(self.performance_interval)
            await self.tick()

    async def tick(self):
        """One periodic cycle; does nothing while nobody is subscribed."""
        if not self.performance_subscribers:
            return
        await self.refresh_team_performance()

    # -------------------------- connections --------------------------

    async def handle(self, websocket: WebSocket):
        """
        Serve one connection until it closes.
        """
        connection_id = str(uuid.uuid4())
        await websocket.accept()
        self.pending[connection_id] = websocket

        try:
            client = await self.authenticate(connection_id, websocket)
            if client is None:
                return

            while True:
                raw = await self._receive_frame(websocket)
                await self.dispatch(client, raw)
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("Unexpected error on connection %s", connection_id)
        finally:
            self.disconnect(connection_id)

    async def authenticate(self, connection_id: str, websocket: WebSocket) -> Optional[ClientConnection]:
        """
        Read the handshake frame and register the connection.
        A bad handshake closes the channel; there is no second attempt.
        """
        raw = await self._receive_frame(websocket)
        try:
            handshake = Handshake.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("WebSocket auth error on %s: %s", connection_id, e.errors(include_url=False))
            self.pending.pop(connection_id, None)
            await self._close(websocket, HANDSHAKE_FAILED_CLOSE_CODE)
            return None

        self.pending.pop(connection_id, None)
        client = ClientConnection(
            id=connection_id,
            websocket=websocket,
            user_id=handshake.user_id,
            username=handshake.username,
        )
        self.clients[connection_id] = client
        logger.info(
            "WebSocket client %s registered for user %s (%s)",
            connection_id, client.user_id, client.username,
        )

        await self._send(
            websocket,
            ConnectedMessage(message="Successfully connected to real-time updates"),
        )
        return client

    def disconnect(self, connection_id: str):
        self.pending.pop(connection_id, None)
        self.performance_subscribers.discard(connection_id)
        client = self.clients.pop(connection_id, None)
        if client is not None:
            logger.info("WebSocket client %s (user %s) disconnected", connection_id, client.user_id)

    # -------------------------- messages --------------------------

    async def dispatch(self, client: ClientConnection, raw):
        try:
            message = inbound_message_adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning("Failed to parse WebSocket message from %s: %s", client.id, e.errors(include_url=False))
            await self._send_error(client.websocket, ErrorCode.MESSAGE_PARSE_ERROR, "Invalid message format")
            return

        if isinstance(message, SubscribeTeamPerformanceMessage):
            await self.subscribe_team_performance(client)
        elif isinstance(message, TaskUpdateMessage):
            await self.handle_task_update(client, message)

    async def subscribe_team_performance(self, client: ClientConnection):
        self.performance_subscribers.add(client.id)
        logger.info("Client %s subscribed to team performance", client.id)
        await self.refresh_team_performance()

    async def handle_task_update(self, client: ClientConnection, message: TaskUpdateMessage):
        """
        Validate and apply a status change, then tell everyone else and
        confirm to the sender. Errors only ever go back to the sender.
        """
        task_id = message.task_id
        changes = message.changes

        try:
            current = await self.store.get_task(task_id)
            if current is None:
                await self._send_error(client.websocket, ErrorCode.TASK_NOT_FOUND, "Task not found")
                return

            is_valid, reason = crud.check_status_transition(current.status, changes.status)
            if not is_valid:
                logger.warning("Rejected status change on task %s by user %s: %s", task_id, client.user_id, reason)
                await self._send_error(client.websocket, ErrorCode.INVALID_STATUS_TRANSITION, reason)
                return

            completed_at = changes.completed_at if changes.status == config.TASK_STATUS_COMPLETED else None
            updated = await self.store.update_task_status(
                task_id, changes.status, completed_at, changes.updated_at
            )
            if updated is None:
                await self._send_error(client.websocket, ErrorCode.TASK_NOT_FOUND, "Task not found")
                return

            activity = await self.store.insert_task_activity(
                task_id,
                client.user_id,
                crud.status_change_action(current.status, changes.status),
                datetime.now(timezone.utc),
            )
        except Exception:
            logger.exception("Database update error for task %s", task_id)
            await self._send_error(client.websocket, ErrorCode.DATABASE_ERROR, "Failed to update task in database")
            return

        activity_payload = TaskActivityResponse(
            id=activity.id,
            action=activity.action,
            created_at=activity.created_at,
            user=ActivityUser(id=client.user_id, username=client.username),
        )
        logger.info("Task %s: %s (user %s)", task_id, activity.action, client.user_id)

        await self.broadcast(
            TaskUpdateEvent(type="task_update", task=updated, activity=activity_payload),
            exclude=client.id,
        )
        await self._send(
            client.websocket,
            TaskUpdateEvent(type="task_update_success", task=updated, activity=activity_payload),
        )

    # -------------------------- fan-out --------------------------

    async def broadcast(self, message: BaseModel, exclude: Optional[str] = None):
        """
        Send to every registered connection except ``exclude``.
        """
        data = message.model_dump_json(by_alias=True)
        targets = [client for client_id, client in list(self.clients.items()) if client_id != exclude]
        await asyncio.gather(*(self._send_text(client.websocket, data) for client in targets))

    async def broadcast_team_performance(self):
        """
        Recompute the leaderboard and push it to every subscriber.
        """
        members = await calculate_team_performance(self.store)
        data = TeamPerformanceEvent(members=members).model_dump_json(by_alias=True)

        targets = [
            self.clients[client_id]
            for client_id in list(self.performance_subscribers)
            if client_id in self.clients
        ]
        await asyncio.gather(*(self._send_text(client.websocket, data) for client in targets))

    async def refresh_team_performance(self):
        try:
            await self.broadcast_team_performance()
        except Exception:
            logger.exception("Failed to broadcast team performance")

    # -------------------------- channel helpers --------------------------

    @staticmethod
    async def _receive_frame(websocket: WebSocket):
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000))
        if message.get("text") is not None:
            return message["text"]
        return message.get("bytes") or b""

    @staticmethod
    def _is_open(websocket: WebSocket) -> bool:
        return (
            websocket.client_state == WebSocketState.CONNECTED
            and websocket.application_state == WebSocketState.CONNECTED
        )

    async def _send_text(self, websocket: WebSocket, data: str) -> bool:
        """
        Best-effort delivery. A failed send is logged and never unregisters
        the connection; only its close does that.
        """
        if not self._is_open(websocket):
            return False
        try:
            await websocket.send_text(data)
            return True
        except Exception as e:
            logger.error("Failed to send to WebSocket client: %s", e)
            return False

    async def _send(self, websocket: WebSocket, message: BaseModel) -> bool:
        return await self._send_text(websocket, message.model_dump_json(by_alias=True))

    async def _send_error(self, websocket: WebSocket, code: ErrorCode, message: str) -> bool:
        return await self._send(websocket, ErrorMessage(code=code.value, message=message))

    @staticmethod
    async def _close(websocket: WebSocket, code: int):
        try:
            await websocket.close(code=code)
        except Exception as e:
            logger.error("Failed to close WebSocket: %s", e)
