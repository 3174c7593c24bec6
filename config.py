"""
Music Server - Global Configuration
"""
import os
import socket

# ================= Application Info =================
APP_NAME = "MusicServer"
APP_VERSION = "1.0.0"

# Verbose logging
DEBUG = False

# ================= Network Configuration =================
HTTP_PORT = 3000             # Web API and /content/ file serving
EVENT_PORT = 3001            # Inbound GENA NOTIFY listener

SSDP_MULTICAST_ADDR = "239.255.255.250"
SSDP_PORT = 1900


def get_local_ip():
    """Get local LAN IP address"""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except Exception:
        return "127.0.0.1"


LOCAL_IP = get_local_ip()

# ================= Library Configuration =================
# Root folder of the music library (overridden by --folder)
MUSIC_FOLDER = os.path.expanduser("~/Music")

# Persisted index, stored in the library root
INDEX_FILE_NAME = ".music_index.json"

# Conventional cover image looked up next to each album's songs
ALBUM_ART_FILE_NAME = "Folder.jpg"

AUDIO_EXTENSIONS = {".mp3", ".m4a", ".aac", ".flac", ".ogg", ".opus"}

# Files expected in a music library that are not songs (not logged)
BENIGN_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".gif", ".ini", ".db", ".html", ".wpl", ".js",
    ".pdf", ".m4p", ".wma", ".txt", ".cue", ".log", ".nfo", ".m3u", ".ds_store",
}

# Metadata extraction worker pool size
SCAN_WORKERS = os.cpu_count() or 4

# Seconds between library rescans (0 = scan once at startup)
RESCAN_INTERVAL = 0

# ================= Search / Playback =================
MAX_SEARCH_RESULTS = 300

# Maximum number of songs enqueued on a zone player in one request
MAX_QUEUE_SONGS = 30

# Idle event streams send a comment line this often (seconds)
EVENT_STREAM_KEEPALIVE = 15

# ================= Subscription Configuration =================
# Requested lease duration for GENA subscriptions (seconds)
SUBSCRIPTION_LIFETIME = 20

# Renew this many seconds before the granted lease expires
SUBSCRIPTION_RENEW_MARGIN = 4

# A superseded SID keeps routing events for this long after a renewal
SUBSCRIPTION_GRACE_PERIOD = 5

# Timeout for SUBSCRIBE / UNSUBSCRIBE requests (seconds)
GENA_REQUEST_TIMEOUT = 5

# ================= Discovery Configuration =================
# How long one SSDP search collects responses (seconds)
DISCOVERY_TIMEOUT = 5

# Delay before retrying a failed search (seconds)
DISCOVERY_RETRY_INTERVAL = 10

ZONE_PLAYER_SEARCH_TARGET = "urn:schemas-upnp-org:device:ZonePlayer:1"

# ================= Album Art Lookup =================
# MusicBrainz allows one anonymous request per second
ART_LOOKUP_INTERVAL = 1.0

MUSICBRAINZ_CONTACT = "musicserver@localhost"
