"""
Client session used for every endpoint connection.

This extends the base MCP client session with request/response logging and
forwards server push notifications to a registered sink.
"""

from typing import Any, Callable, Optional

from mcp import ClientSession
from mcp.shared.session import (
    ReceiveResultT,
    SendNotificationT,
    SendRequestT,
)
import mcp.types as types

from genval_mcp.utils.logging import get_logger

logger = get_logger(__name__)

NotificationSink = Callable[[str, Any], None]
"""
Receives (server_name, notification). Must return without awaiting anything.
"""


def client_info(name: str, version: str) -> types.Implementation:
    """The identity sent to each endpoint during the handshake."""
    return types.Implementation(name=name, version=version)


class EndpointClientSession(ClientSession):
    """
    Client session for one tool-serving endpoint.

    Supports:
    - Request/response debug logging
    - Forwarding server notifications to the orchestrator's channel
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.server_name: Optional[str] = None
        self.notification_sink: Optional[NotificationSink] = None

    async def send_request(
        self,
        request: SendRequestT,
        result_type: type[ReceiveResultT],
        *args,
        **kwargs,
    ) -> ReceiveResultT:
        logger.debug(f"{self.server_name}: send_request: request=", data=request.model_dump())
        try:
            result = await super().send_request(request, result_type, *args, **kwargs)
            logger.debug(f"{self.server_name}: send_request: response=", data=result.model_dump())
            return result
        except Exception as e:
            logger.error(f"{self.server_name}: send_request failed: {e}")
            raise

    async def send_notification(self, notification: SendNotificationT, *args, **kwargs) -> None:
        logger.debug(f"{self.server_name}: send_notification:", data=notification.model_dump())
        return await super().send_notification(notification, *args, **kwargs)

    async def _received_notification(self, notification: types.ServerNotification) -> None:
        """
        Hand the notification to the sink, then let the base session process it.
        """
        logger.debug(
            f"{self.server_name}: _received_notification: notification=",
            data=notification.model_dump(),
        )
        if self.notification_sink is not None:
            self.notification_sink(self.server_name, notification)
        return await super()._received_notification(notification)
