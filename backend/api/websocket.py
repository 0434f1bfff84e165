"""WebSocket handler for the live room stream.

Each connected client receives the full state snapshot on connect, every
published animation frame, and a fresh state snapshot whenever the store
changes. Clients may send ``{"type": "ping"}`` and get a pong back.

Messages:
    {"type": "state", "data": OperationsState}
    {"type": "frame", "data": [RenderableAgent, ...]}
    {"type": "pong", "timestamp": ...}
"""

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

if TYPE_CHECKING:
    from office.animation import RenderableAgent
    from office.driver import AnimationDriver
    from store.state_store import OperationsState, OperationsStore

logger = structlog.get_logger(__name__)

websocket_router = APIRouter()

# Messages waiting for a slow client beyond this are dropped.
_OUTBOX_SIZE = 256

_store: "OperationsStore | None" = None
_driver: "AnimationDriver | None" = None


def set_room(store: "OperationsStore", driver: "AnimationDriver") -> None:
    """Set the store and driver streamed to WebSocket clients."""
    global _store, _driver
    _store = store
    _driver = driver
    logger.info("websocket_room_configured")


def get_room() -> tuple["OperationsStore", "AnimationDriver"]:
    """Return the configured store and driver for WebSocket handlers."""
    if _store is None or _driver is None:
        raise RuntimeError(
            "Room not configured for WebSocket handlers. Call set_room() during startup."
        )
    return _store, _driver


def _state_message(state: "OperationsState") -> dict[str, Any]:
    return {"type": "state", "data": state.model_dump(mode="json")}


def _frame_message(frame: "list[RenderableAgent]") -> dict[str, Any]:
    return {"type": "frame", "data": [agent.model_dump(mode="json") for agent in frame]}


@websocket_router.websocket("/ws/room")
async def room_websocket(websocket: WebSocket) -> None:
    """WebSocket endpoint streaming the operations room.

    Args:
        websocket: The WebSocket connection.
    """
    await websocket.accept()

    try:
        store, driver = get_room()
    except RuntimeError as e:
        logger.error("websocket_room_unavailable", error=str(e))
        await websocket.close(code=1011)
        return

    logger.info("websocket_connected")

    outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=_OUTBOX_SIZE)

    def _enqueue(message: dict[str, Any]) -> None:
        try:
            outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.debug("websocket_message_dropped", message_type=message["type"])

    # Subscribe first so no change between snapshot and subscription is lost.
    unsubscribe_state = store.subscribe(lambda _action, state: _enqueue(_state_message(state)))
    unsubscribe_frames = driver.add_frame_listener(lambda frame: _enqueue(_frame_message(frame)))

    try:
        await websocket.send_json(_state_message(store.state))

        async def send_messages() -> None:
            """Forward queued state and frame messages to the client."""
            try:
                while True:
                    message = await outbox.get()
                    await websocket.send_json(message)
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_send")
            except Exception as e:
                logger.error("websocket_send_error", error=str(e))

        async def receive_commands() -> None:
            """Receive and answer client commands."""
            try:
                while True:
                    data = await websocket.receive_json()
                    if not isinstance(data, dict):
                        logger.warning("invalid_ws_message")
                        continue
                    command_type = data.get("type")

                    if command_type == "ping":
                        _enqueue({"type": "pong", "timestamp": data.get("timestamp")})
                    else:
                        logger.warning("unknown_command", command_type=command_type)
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_receive")
            except Exception as e:
                logger.error("websocket_receive_error", error=str(e))

        send_task = asyncio.create_task(send_messages())
        receive_task = asyncio.create_task(receive_commands())

        # Wait for either task to complete (usually due to disconnect)
        done, pending = await asyncio.wait(
            [send_task, receive_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    except WebSocketDisconnect:
        logger.info("websocket_disconnected")
    except Exception as e:
        logger.error("websocket_error", error=str(e))
    finally:
        unsubscribe_state()
        unsubscribe_frames()
        logger.info("websocket_cleanup_complete")
