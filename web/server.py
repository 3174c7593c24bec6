"""
Web Server - JSON API, zone player control and event stream

Routes:
    GET  /api/music/{path}          browse the index
    GET  /api/search/{term}         search artists, albums and songs
    GET  /api/sonos                 list rooms
    POST /api/sonos/{room}/action   playback control
    GET  /api/sonos/{room}/events   server-sent player state
    GET  /content/{path}            library files
"""
import asyncio
import json
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlsplit

from aiohttp import web

from core.errors import MusicServerError, BadRequestError, ControlError
from core.utils import log_info, log_debug, log_warning, log_error
from config import LOCAL_IP, HTTP_PORT, EVENT_STREAM_KEEPALIVE
from library.models import MusicLibrary
from sonos.control import ZonePlayerControl
from sonos.discovery import ZonePlayer, ZonePlayerManager
from sonos.events import decode_transport_event, decode_rendering_event, TransportEvent, RenderingControlEvent
from sonos.subscriptions import SubscriptionRegistry

ACTIONS = ("Play", "Pause", "Next", "Prev")


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Turn MusicServerError into a JSON error body"""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except MusicServerError as e:
        log_debug("WebServer", f"{request.method} {request.path}: {e.message}")
        return web.json_response(e.to_dict(), status=e.code)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        log_error("WebServer", f"{request.method} {request.path} failed: {e}")
        return web.json_response(MusicServerError(str(e)).to_dict(), status=500)


def transport_frame(event: TransportEvent, position: str, control_url: str) -> Dict[str, Any]:
    """Player state frame for an AVTransport event (empty fields omitted)"""
    state: Dict[str, Any] = {"playing": event.playing}
    track = event.track
    if track:
        album_art = track.album_art_uri
        if album_art and not album_art.startswith("http://") and not album_art.startswith("https://"):
            album_art = f"http://{urlsplit(control_url).netloc}{album_art}"
        state.update(track=track.title, artist=track.creator, album=track.album, album_art_uri=album_art)
    state.update(duration=event.current_track_duration, position=position)
    return {"sonos": {key: value for key, value in state.items() if value != ""}}


def rendering_frame(event: RenderingControlEvent) -> Optional[Dict[str, Any]]:
    """Player state frame for a RenderingControl event, None without volume"""
    volume = event.master_volume
    if volume is None:
        return None
    return {"sonos": {"volume": volume}}


class WebServer:
    """JSON API and event stream server"""

    def __init__(
        self,
        library: MusicLibrary,
        zone_players: ZonePlayerManager,
        registry: SubscriptionRegistry,
        music_folder: str,
        server_url: Optional[str] = None,
        port: int = HTTP_PORT,
        control_factory: Callable[..., ZonePlayerControl] = ZonePlayerControl,
        keepalive: float = EVENT_STREAM_KEEPALIVE,
    ):
        """
        Initialize web server.

        Args:
            library: Holder of the current index snapshot
            zone_players: Discovered zone players
            registry: Event subscription registry
            music_folder: Library root served under /content/
            server_url: URL zone players reach this server at
            port: Listen port
            control_factory: Creates the control object for a player
            keepalive: Seconds between comment lines on an idle event stream
        """
        self._library = library
        self._zone_players = zone_players
        self._registry = registry
        self._music_folder = music_folder
        self._port = port
        self._server_url = server_url or f"http://{LOCAL_IP}:{port}"
        self._control_factory = control_factory
        self._keepalive = keepalive
        self._runner: Optional[web.AppRunner] = None

    # ============== Library API ==============

    async def handle_music(self, request: web.Request):
        """Browse: "", "artists[/name]", "albums[/name]" or "songs" """
        path = request.match_info.get("path", "").strip("/")
        kind, _, name = path.partition("/")
        results = self._library.snapshot().query(kind, name)
        return web.json_response({"results": [r.to_dict() for r in results]})

    async def handle_search(self, request: web.Request):
        term = request.match_info.get("term", "")
        results = self._library.snapshot().search(term)
        return web.json_response({"results": [r.to_dict() for r in results]})

    # ============== Zone Player API ==============

    async def handle_rooms(self, request: web.Request):
        return web.json_response({"rooms": self._zone_players.rooms()})

    async def handle_action(self, request: web.Request):
        """Volume, transport action, new queue and seek, applied in that order"""
        player = self._zone_players.get_by_room(request.match_info["room"])
        try:
            data = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise BadRequestError(f"invalid JSON body: {e}")
        if not isinstance(data, dict):
            raise BadRequestError("request body must be an object")

        volume = _optional_int(data, "volume")
        set_time_secs = _optional_int(data, "set_time_secs")
        song_ids = _song_ids(data)
        action = data.get("action") or ""
        if action and action not in ACTIONS:
            raise BadRequestError(f"unknown action: {action}")
        if volume is not None and not 0 <= volume <= 100:
            raise BadRequestError(f"volume out of range: {volume}")
        if set_time_secs is not None and set_time_secs < 0:
            raise BadRequestError(f"invalid seek position: {set_time_secs}")

        async with self._control_factory(player, self._server_url) as control:
            if volume is not None:
                await control.set_volume(volume)
            if action == "Play":
                await control.play()
            elif action == "Pause":
                await control.pause()
            elif action == "Next":
                await control.next()
            elif action == "Prev":
                await control.previous()
            if song_ids:
                await control.play_songs(self._library.snapshot(), song_ids)
            if set_time_secs is not None:
                await control.seek(set_time_secs)

        return web.json_response({})

    async def handle_events(self, request: web.Request):
        """
        Stream player state as server-sent events.

        Subscribes to the room's AVTransport and RenderingControl events and
        ends when the client goes away or a subscription closes.
        """
        player = self._zone_players.get_by_room(request.match_info["room"])

        response = web.StreamResponse(headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-store",
        })
        await response.prepare(request)

        # Items are (kind, payload); None ends the stream
        frames: asyncio.Queue = asyncio.Queue()
        handles = [
            self._registry.subscribe(player.av_transport.event_url,
                                     lambda payload: frames.put_nowait(("transport", payload))),
            self._registry.subscribe(player.rendering_control.event_url,
                                     lambda payload: frames.put_nowait(("rendering", payload))),
        ]

        async def watch(handle):
            await handle.closed.wait()
            frames.put_nowait(None)

        watchers = [asyncio.create_task(watch(handle)) for handle in handles]
        log_info("WebServer", f"Event stream opened for {player.room_name}")
        try:
            async with self._control_factory(player, self._server_url) as control:
                while True:
                    try:
                        item = await asyncio.wait_for(frames.get(), self._keepalive)
                    except asyncio.TimeoutError:
                        # A write is the only way to notice a vanished client
                        await response.write(b": keepalive\n\n")
                        continue
                    if item is None:
                        break
                    frame = await self._build_frame(player, control, *item)
                    if frame is None:
                        continue
                    await response.write(f"data: {json.dumps(frame)}\n\n".encode("utf-8"))
        except (ConnectionResetError, ControlError) as e:
            log_debug("WebServer", f"Event stream for {player.room_name} ended: {e}")
        finally:
            for handle in handles:
                self._registry.unsubscribe(handle)
            for watcher in watchers:
                watcher.cancel()
            log_info("WebServer", f"Event stream closed for {player.room_name}")
        return response

    async def _build_frame(self, player: ZonePlayer, control: ZonePlayerControl,
                           kind: str, payload: str) -> Optional[Dict[str, Any]]:
        if kind == "rendering":
            return rendering_frame(decode_rendering_event(payload))

        event = decode_transport_event(payload)
        position = ""
        try:
            position = (await control.get_position_info()).get("RelTime", "")
        except ControlError as e:
            log_warning("WebServer", f"GetPositionInfo failed on {player.room_name}: {e.message}")
        return transport_frame(event, position, player.av_transport.control_url)

    # ============== Application Setup ==============

    def create_app(self) -> web.Application:
        """Create web application with routes"""
        app = web.Application(middlewares=[error_middleware])

        app.router.add_get("/api/music", self.handle_music)
        app.router.add_get("/api/music/{path:.*}", self.handle_music)
        app.router.add_get("/api/search/{term}", self.handle_search)

        app.router.add_get("/api/sonos", self.handle_rooms)
        app.router.add_get("/api/sonos/", self.handle_rooms)
        app.router.add_post("/api/sonos/{room}/action", self.handle_action)
        app.router.add_get("/api/sonos/{room}/events", self.handle_events)

        app.router.add_static("/content/", self._music_folder, show_index=False, follow_symlinks=False)
        return app

    async def start(self):
        """Start web server"""
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, "0.0.0.0", self._port)
        await site.start()
        log_info("WebServer", f"API started: http://{LOCAL_IP}:{self._port}")

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
            self._runner = None


def _optional_int(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise BadRequestError(f"{key} must be an integer")
    return value


def _song_ids(data: Dict[str, Any]) -> List[int]:
    value = data.get("song_ids") or []
    if not isinstance(value, list) or any(isinstance(v, bool) or not isinstance(v, int) for v in value):
        raise BadRequestError("song_ids must be a list of integers")
    return value
