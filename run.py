"""
 Main Entry Point

Wiring:
- IndexBuilder scans the music folder and publishes MusicIndex snapshots
- ZonePlayerManager discovers zone players in the background
- SubscriptionRegistry owns the GENA subscriptions, EventGateway feeds it
- WebServer serves the JSON API, the event stream and /content/

Features:
1. Library index with metadata reuse between scans
2. Album art from Folder.jpg, embedded pictures or the Cover Art Archive
3. Browse / search API
4. Zone player control (queue, transport, volume, seek)
5. Live player state as server-sent events
"""
import argparse
import asyncio
import os
import signal
import sys
from typing import Optional

from core.utils import log_info, log_warning, log_error, set_log_level, LOG_LEVEL_DEBUG, LOG_LEVEL_INFO
from config import APP_NAME, APP_VERSION, DEBUG, MUSIC_FOLDER, INDEX_FILE_NAME, RESCAN_INTERVAL

from library.album_art import AlbumArtResolver
from library.index_builder import IndexBuilder
from library.index_store import IndexStore
from library.models import MusicLibrary
from sonos.discovery import ZonePlayerManager
from sonos.gateway import EventGateway
from sonos.subscriptions import SubscriptionRegistry
from web.server import WebServer


class MusicServer:
    """
    Main application for the music server.
    """

    def __init__(self, music_folder: str, rescan_interval: float = RESCAN_INTERVAL):
        """
        Initialize the server.

        Args:
            music_folder: Library root
            rescan_interval: Seconds between rescans (0 = scan once)
        """
        self._music_folder = os.path.abspath(music_folder)
        self._rescan_interval = rescan_interval

        self._library = MusicLibrary()
        self._builder = IndexBuilder(
            self._music_folder,
            self._library,
            store=IndexStore(os.path.join(self._music_folder, INDEX_FILE_NAME)),
            art_resolver=AlbumArtResolver(self._music_folder),
        )

        self._zone_players = ZonePlayerManager()
        self._registry = SubscriptionRegistry()
        self._gateway = EventGateway(self._registry)
        self._web_server = WebServer(self._library, self._zone_players, self._registry, self._music_folder)

        self._scan_task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()

    async def _scan_loop(self):
        """Initial scan, then periodic rescans"""
        while True:
            try:
                report = await self._builder.scan()
                if report:
                    log_info("Startup", f"Index ready: {report.total_songs} songs "
                                        f"({report.reused_songs} reused, {report.failed_songs} unreadable)")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_error("Scan", f"Scan failed: {e}")

            if self._rescan_interval <= 0:
                return
            await asyncio.sleep(self._rescan_interval)

    async def run(self):
        """Run the main application"""
        print(" ")
        print(f"  {APP_NAME} v{APP_VERSION}")
        print(" ")
        log_info("Startup", f"Music folder: {self._music_folder}")

        await self._gateway.start()
        await self._web_server.start()
        self._zone_players.start()
        self._scan_task = asyncio.create_task(self._scan_loop())

        log_info("Startup", "All services started")
        await self._stop.wait()
        await self._shutdown()

    def request_shutdown(self):
        self._stop.set()

    async def _shutdown(self):
        """Shutdown the application"""
        log_info("Startup", "Shutting down...")

        if self._scan_task:
            self._scan_task.cancel()
            try:
                await self._scan_task
            except asyncio.CancelledError:
                pass

        await self._zone_players.stop()
        await self._registry.close()
        await self._gateway.stop()
        await self._web_server.stop()

        log_info("Startup", "Shutdown complete")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=f"{APP_NAME} v{APP_VERSION}")
    parser.add_argument("--folder", default=MUSIC_FOLDER, help="music library root")
    parser.add_argument("--debug", action="store_true", default=DEBUG, help="enable debug logging")
    return parser.parse_args(argv)


def main():
    """Main entry point"""
    args = parse_args()

    # Set log level based on DEBUG configuration
    if args.debug:
        set_log_level(LOG_LEVEL_DEBUG)
        log_info("Startup", "DEBUG mode enabled - Log level set to DEBUG")
    else:
        set_log_level(LOG_LEVEL_INFO)

    if not os.path.isdir(args.folder):
        log_error("Startup", f"Music folder not found: {args.folder}")
        sys.exit(1)

    # Windows event loop policy
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

    async def serve():
        app = MusicServer(args.folder)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, app.request_shutdown)
            except NotImplementedError:
                log_warning("Startup", f"Signal handler for {sig.name} not supported")
        await app.run()

    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
