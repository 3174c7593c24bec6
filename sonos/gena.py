"""
GENA client - outbound SUBSCRIBE / UNSUBSCRIBE requests

A new subscription sends NT and CALLBACK, a renewal sends the current SID.
The device answers with the (possibly rotated) SID and the granted TIMEOUT.
"""
import asyncio
import re
from typing import Optional, Tuple

import aiohttp

from core.errors import SubscriptionError
from core.utils import log_debug
from config import LOCAL_IP, EVENT_PORT, SUBSCRIPTION_LIFETIME, GENA_REQUEST_TIMEOUT


def parse_timeout(header: Optional[str], default: int = SUBSCRIPTION_LIFETIME) -> int:
    """
    Parse a GENA TIMEOUT header.

    "Second-20" -> 20; missing, "infinite" or malformed -> default
    """
    if not header:
        return default
    match = re.search(r"Second-(\d+)", header, re.IGNORECASE)
    if not match:
        return default
    return int(match.group(1))


class GenaClient:
    """Issues GENA requests against zone player event endpoints"""

    def __init__(
        self,
        callback_url: Optional[str] = None,
        lifetime: int = SUBSCRIPTION_LIFETIME,
        request_timeout: float = GENA_REQUEST_TIMEOUT,
    ):
        """
        Initialize GENA client.

        Args:
            callback_url: URL devices deliver NOTIFY requests to
            lifetime: Requested lease duration in seconds
            request_timeout: Timeout of one request in seconds
        """
        self._callback_url = callback_url or f"http://{LOCAL_IP}:{EVENT_PORT}/"
        self._lifetime = lifetime
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)

    @property
    def callback_url(self) -> str:
        return self._callback_url

    async def subscribe(self, endpoint: str, sid: Optional[str] = None) -> Tuple[str, int]:
        """
        Create or renew a subscription.

        Args:
            endpoint: Event subscription URL of the device
            sid: Current SID when renewing, None for a new subscription

        Returns:
            (sid, granted lease seconds)

        Raises:
            SubscriptionError: network error, non-200 status or missing SID
        """
        headers = {"TIMEOUT": f"Second-{self._lifetime}"}
        if sid:
            headers["SID"] = sid
        else:
            headers["NT"] = "upnp:event"
            headers["CALLBACK"] = f"<{self._callback_url}>"

        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.request("SUBSCRIBE", endpoint, headers=headers) as resp:
                    if resp.status != 200:
                        raise SubscriptionError(f"SUBSCRIBE {endpoint} returned {resp.status}")
                    new_sid = resp.headers.get("SID", "")
                    granted = parse_timeout(resp.headers.get("TIMEOUT"), self._lifetime)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SubscriptionError(f"SUBSCRIBE {endpoint} failed: {e}") from e

        if not new_sid:
            raise SubscriptionError(f"SUBSCRIBE {endpoint} returned no SID")

        log_debug("Subscription", f"{'Renewed' if sid else 'Subscribed'} {endpoint}: {new_sid} ({granted}s)")
        return new_sid, granted

    async def unsubscribe(self, endpoint: str, sid: str) -> bool:
        """
        Cancel a subscription (best-effort).

        Returns:
            True when the device answered 200
        """
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.request("UNSUBSCRIBE", endpoint, headers={"SID": sid}) as resp:
                    ok = resp.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log_debug("Subscription", f"UNSUBSCRIBE {endpoint} failed: {e}")
            return False

        log_debug("Subscription", f"Unsubscribed {endpoint}: {sid} ({'ok' if ok else 'rejected'})")
        return ok
