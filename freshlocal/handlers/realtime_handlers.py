import asyncio
from typing import Awaitable, Callable

from aiohttp import WSMsgType, web

from ..services.realtime import EventSubscription, RealtimeChannel
from .base_handler import BaseHandler

class RealtimeHandler(BaseHandler):
    """WebSocket feeds: a vendor's order board and one customer's order"""

    def __init__(self, store, realtime: RealtimeChannel, heartbeat: float = 30.0):
        super().__init__(store)
        self.realtime = realtime
        self.heartbeat = heartbeat

    async def vendor_events(self, request: web.Request) -> web.WebSocketResponse:
        vendor = await self.require_vendor_access(request, request.match_info["vendor_id"])
        return await self._stream(
            request, lambda: self.realtime.subscribe_vendor(vendor.vendor_id)
        )

    async def order_events(self, request: web.Request) -> web.WebSocketResponse:
        order = await self.visible_order(request)
        return await self._stream(
            request, lambda: self.realtime.subscribe_order(order.order_id)
        )

    async def _stream(self, request: web.Request,
                      subscribe: Callable[[], Awaitable[EventSubscription]]
                      ) -> web.WebSocketResponse:
        # Subscribed before the handshake completes so no event after it is missed
        subscription = await subscribe()
        pump = None
        try:
            ws = web.WebSocketResponse(heartbeat=self.heartbeat)
            await ws.prepare(request)

            async def forward():
                async for event in subscription:
                    await ws.send_str(event.model_dump_json())

            pump = asyncio.create_task(forward())
            # Incoming frames are ignored; the loop ends when the client goes away
            async for message in ws:
                if message.type == WSMsgType.ERROR:
                    self.logger.warning(f"WebSocket closed with error: {ws.exception()}")
            return ws
        finally:
            if pump is not None:
                pump.cancel()
            await subscription.close()
