"""
Out-of-band notifications pushed by endpoints.

Sessions publish into a bounded channel from their own receive tasks; a pump
running in the orchestrator's task group hands each notification to the
configured handler.
"""

import inspect
import json
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

import anyio
from anyio.abc import ObjectReceiveStream, ObjectSendStream
from pydantic import BaseModel, Field, ValidationError

from genval_mcp.errors import DecodeError
from genval_mcp.utils.logging import get_logger

logger = get_logger(__name__)

NotificationHandler = Callable[[str, Any], Union[None, Awaitable[None]]]


class NotificationPayload(BaseModel):
    """The {name, output} object endpoints push. Unknown fields are kept."""

    name: str
    output: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "allow"}


def _extract_raw(notification: Any) -> Any:
    """
    Pull the pushed data out of an SDK notification. Logging messages carry
    it in ``params.data``; other kinds are taken from their params.
    """
    root = getattr(notification, "root", notification)
    params = getattr(root, "params", None)
    if params is None:
        return root

    data = getattr(params, "data", None)
    if data is not None:
        return data

    if isinstance(params, BaseModel):
        return params.model_dump(by_alias=True, exclude_none=True)
    return params


def decode_notification(notification: Any) -> NotificationPayload:
    """
    Decode a notification into a NotificationPayload.

    Accepts SDK notification models, mappings, or JSON text.

    Raises:
        DecodeError: If the payload is not an object with a string ``name``.
    """
    raw = _extract_raw(notification)

    try:
        if isinstance(raw, (str, bytes, bytearray)):
            return NotificationPayload.model_validate_json(raw)
        if isinstance(raw, BaseModel):
            raw = raw.model_dump(by_alias=True, exclude_none=True)
        return NotificationPayload.model_validate(raw)
    except ValidationError as e:
        raise DecodeError(f"malformed notification payload: {e.error_count()} error(s)") from e


def log_notification(server_name: str, notification: Any) -> None:
    """
    Default handler: decode and log. Never touches orchestrator state.
    """
    try:
        payload = decode_notification(notification)
    except DecodeError as e:
        logger.warning(f"{server_name}: Dropping notification: {e}")
        return

    logger.info(
        f"{server_name}: Notification '{payload.name}' output:",
        data=json.dumps(payload.output, default=str, sort_keys=True),
    )


class NotificationChannel:
    """
    Bounded queue between session receive tasks and the notification handler.
    """

    def __init__(self, buffer_size: int = 64):
        self.buffer_size = buffer_size
        self._send_stream: Optional[ObjectSendStream] = None
        self._receive_stream: Optional[ObjectReceiveStream] = None
        self.dropped = 0

    def open(self) -> None:
        self._send_stream, self._receive_stream = anyio.create_memory_object_stream[
            Tuple[str, Any]
        ](max_buffer_size=self.buffer_size)

    def publish(self, server_name: str, notification: Any) -> None:
        """
        Enqueue without waiting. A full or closed channel drops the notification.
        """
        if self._send_stream is None:
            self.dropped += 1
            logger.warning(f"{server_name}: Notification channel is not open, dropping.")
            return

        try:
            self._send_stream.send_nowait((server_name, notification))
        except anyio.WouldBlock:
            self.dropped += 1
            logger.warning(
                f"{server_name}: Notification channel full ({self.buffer_size}), dropping."
            )
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            self.dropped += 1
            logger.debug(f"{server_name}: Notification channel closed, dropping.")

    async def pump(self, handler: NotificationHandler) -> None:
        """
        Deliver queued notifications to the handler until the channel closes.
        """
        receive_stream = self._receive_stream
        if receive_stream is None:
            raise RuntimeError("NotificationChannel.open() must be called before pump().")

        async with receive_stream:
            async for server_name, notification in receive_stream:
                try:
                    result = handler(server_name, notification)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f"{server_name}: Error in notification handler: {e}")

    async def aclose(self) -> None:
        if self._send_stream is not None:
            await self._send_stream.aclose()
            self._send_stream = None
