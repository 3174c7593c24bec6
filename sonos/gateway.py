"""
Event Gateway - the single inbound NOTIFY listener

Every zone player delivers its events to this one HTTP endpoint. The SID
header identifies the subscription, the body carries the property set. The
device always gets a 200 back, whatever happened to the event.
"""
import xml.etree.ElementTree as ET
from typing import Optional

from aiohttp import web

from core.utils import log_info, log_debug, log_warning
from config import LOCAL_IP, EVENT_PORT
from sonos.events import parse_notification
from sonos.subscriptions import SubscriptionRegistry


class EventGateway:
    """Receives GENA NOTIFY requests and routes them to the registry"""

    def __init__(self, registry: SubscriptionRegistry, host: str = "0.0.0.0", port: int = EVENT_PORT,
                 client_max_size: int = 1024 ** 2):
        """
        Initialize gateway.

        Args:
            registry: Registry owning the SID -> subscription mapping
            host: Bind address
            port: Listen port
            client_max_size: Largest accepted NOTIFY body in bytes
        """
        self._registry = registry
        self._host = host
        self._port = port
        self._client_max_size = client_max_size
        self._runner: Optional[web.AppRunner] = None

    async def handle_notify(self, request: web.Request):
        """Handle one NOTIFY request"""
        sid = request.headers.get("SID", "")
        try:
            body = await request.read()
        except web.HTTPRequestEntityTooLarge as e:
            log_warning("Gateway", f"Event from {request.remote} ({sid}) too large, dropped: {e.text}")
            return web.Response(status=200)

        try:
            payload = parse_notification(body)
        except ET.ParseError as e:
            log_warning("Gateway", f"Malformed event from {request.remote} ({sid}): {e}")
            return web.Response(status=200)

        if payload is None:
            log_debug("Gateway", f"Event without properties ({sid})")
            return web.Response(status=200)

        if not self._registry.dispatch(sid, payload):
            log_debug("Gateway", f"No subscription for SID {sid}")
        return web.Response(status=200)

    def create_app(self) -> web.Application:
        """Create aiohttp application with routes"""
        app = web.Application(client_max_size=self._client_max_size)
        app.router.add_route("NOTIFY", "/", self.handle_notify)
        app.router.add_route("NOTIFY", "/{tail:.*}", self.handle_notify)
        return app

    async def start(self):
        """Start listening"""
        if self._runner:
            return
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        log_info("Gateway", f"Event listener started on http://{LOCAL_IP}:{self._port}/")

    async def stop(self):
        """Stop listening"""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            log_info("Gateway", "Event listener stopped")
