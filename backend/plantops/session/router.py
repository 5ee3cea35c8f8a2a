from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from plantops.auth.schemas import UserProfile
from plantops.db import SessionFactory, session_factory
from plantops.dependencies import resolve_user_from_token
from plantops.session.store import SessionError, UserSessionStore

router = APIRouter(prefix="/api/session", tags=["session"])
logger = logging.getLogger(__name__)


def get_session_factory() -> SessionFactory:
    return session_factory


def _profile_message(profile: UserProfile) -> dict:
    return {"type": "profile", "user": profile.model_dump(mode="json")}


def _authenticate(token: str, factory: SessionFactory) -> Optional[int]:
    with factory() as session:
        try:
            return resolve_user_from_token(token, session).id
        except HTTPException:
            return None


@router.websocket("/ws")
async def session_updates(
    websocket: WebSocket,
    token: str = Query(""),
    factory: SessionFactory = Depends(get_session_factory),
):
    """
    Live view of the caller's permission matrix.

    Sends the profile on connect and again every time the user's permission
    rows (or the permission catalog) change. Replies ``pong`` to ``ping``.
    A ``closed`` message is sent when the user is deleted or deactivated.
    """
    user_id = await run_in_threadpool(_authenticate, token, factory) if token else None
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[Optional[UserProfile]]" = asyncio.Queue()

    store = UserSessionStore(session_factory=factory)
    store.subscribe(lambda profile: loop.call_soon_threadsafe(queue.put_nowait, profile))
    store.on_closed(lambda: loop.call_soon_threadsafe(queue.put_nowait, None))

    try:
        await run_in_threadpool(store.init, user_id)
    except SessionError as exc:
        logger.warning("Session could not be opened: %s", exc)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async def push_profiles() -> None:
        while True:
            profile = await queue.get()
            if profile is None:
                await websocket.send_json({"type": "closed"})
                await websocket.close()
                return
            await websocket.send_json(_profile_message(profile))

    async def read_client() -> None:
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")

    sender = asyncio.create_task(push_profiles())
    receiver = asyncio.create_task(read_client())
    try:
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error("Session socket for user %s failed: %s", user_id, exc)
    finally:
        store.cleanup()
        logger.info("Session socket closed for user %s", user_id)
