"""
Subscription Registry - shared GENA subscriptions with listener fan-out

One remote subscription exists per event endpoint, no matter how many
listeners are interested in it. The first listener starts a renew loop task,
the last one to leave makes that task send UNSUBSCRIBE and exit.

All methods run on the event loop thread. Every change to the endpoint map,
the SID map and the listener sets is made in synchronous code without an
await in between, so no lock is needed. Network calls are awaited outside
those sections and their results applied afterwards.

State per endpoint:
    absent -> SUBSCRIBING -> ACTIVE <-> RENEWING -> TEARING_DOWN -> absent
"""
import asyncio
import itertools
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.errors import SubscriptionError
from core.utils import log_info, log_debug, log_warning, log_error
from config import SUBSCRIPTION_RENEW_MARGIN, SUBSCRIPTION_GRACE_PERIOD
from sonos.gena import GenaClient

# Shortest wait between two SUBSCRIBE requests for one endpoint (seconds)
MIN_RENEW_WAIT = 1.0

EventListener = Callable[[str], Any]


class SubscriptionState(Enum):
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    RENEWING = "renewing"
    TEARING_DOWN = "tearing_down"


class SubscriptionHandle:
    """
    Registration handle returned to a listener.

    `closed` is set once the listener will receive no more events, either
    because it unsubscribed or because the subscription failed; in the latter
    case `close_reason` says why.
    """

    def __init__(self, endpoint: str, listener_id: int):
        self.endpoint = endpoint
        self.listener_id = listener_id
        self.closed = asyncio.Event()
        self.close_reason: Optional[str] = None

    @property
    def is_closed(self) -> bool:
        return self.closed.is_set()

    def _close(self, reason: Optional[str] = None):
        if not self.closed.is_set():
            self.close_reason = reason
            self.closed.set()

    def __repr__(self):
        return f"SubscriptionHandle({self.endpoint!r}, {self.listener_id})"


class _Subscription:
    """Registry entry for one endpoint"""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        self.sid: Optional[str] = None
        self.last_event: Optional[str] = None
        self.listeners: Dict[int, Tuple[EventListener, SubscriptionHandle]] = {}
        self.stop = asyncio.Event()
        self.task: Optional[asyncio.Task] = None
        self.state = SubscriptionState.SUBSCRIBING


class SubscriptionRegistry:
    """
    Owns all outbound event subscriptions.

    Usage:
        registry = SubscriptionRegistry()
        handle = registry.subscribe(player.av_transport_events, on_event)
        ...
        registry.unsubscribe(handle)
    """

    def __init__(
        self,
        client: Optional[GenaClient] = None,
        renew_margin: float = SUBSCRIPTION_RENEW_MARGIN,
        grace_period: float = SUBSCRIPTION_GRACE_PERIOD,
        min_wait: float = MIN_RENEW_WAIT,
    ):
        """
        Initialize registry.

        Args:
            client: GENA client used for SUBSCRIBE/UNSUBSCRIBE
            renew_margin: Renew this many seconds before the lease expires
            grace_period: Seconds a superseded SID still routes events
            min_wait: Lower bound for the wait between two SUBSCRIBE calls
        """
        self._client = client or GenaClient()
        self._renew_margin = renew_margin
        self._grace_period = grace_period
        self._min_wait = min_wait

        self._subscriptions: Dict[str, _Subscription] = {}
        self._by_sid: Dict[str, _Subscription] = {}
        self._retired: Dict[str, Tuple[_Subscription, float]] = {}
        self._listener_ids = itertools.count(1)
        self._callback_tasks = set()

    # ============== Listener API ==============

    def subscribe(self, endpoint: str, on_event: EventListener) -> SubscriptionHandle:
        """
        Register a listener for an event endpoint.

        The first listener of an endpoint starts its renew loop. When an event
        was already received for the endpoint, the new listener is called with
        it before this method returns.

        Args:
            endpoint: Event subscription URL
            on_event: Called with the raw event payload; may return a coroutine

        Returns:
            Handle for unsubscribe()
        """
        sub = self._subscriptions.get(endpoint)
        created = sub is None
        if created:
            sub = _Subscription(endpoint)
            self._subscriptions[endpoint] = sub

        handle = SubscriptionHandle(endpoint, next(self._listener_ids))
        sub.listeners[handle.listener_id] = (on_event, handle)
        sub.stop.clear()

        if created:
            sub.task = asyncio.create_task(self._run(sub))
            log_info("Subscription", f"Subscribing to {endpoint}")
        else:
            log_debug("Subscription", f"Listener {handle.listener_id} joined {endpoint} "
                                      f"({len(sub.listeners)} listener(s))")

        if sub.last_event is not None:
            self._invoke(on_event, sub.last_event)
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        """
        Remove one listener.

        When it was the last listener of its endpoint, the renew loop tears
        the remote subscription down.

        Returns:
            True when the listener was registered
        """
        sub = self._subscriptions.get(handle.endpoint)
        handle._close()
        if sub is None or handle.listener_id not in sub.listeners:
            return False

        del sub.listeners[handle.listener_id]
        if not sub.listeners:
            log_debug("Subscription", f"Last listener left {handle.endpoint}")
            sub.stop.set()
        return True

    # ============== Event Routing ==============

    def dispatch(self, sid: str, payload: str) -> bool:
        """
        Deliver an event received for a SID.

        The payload is stored as the endpoint's latest event and passed to
        every listener in registration order.

        Returns:
            False when no subscription owns the SID
        """
        sub = self._lookup_sid(sid)
        if sub is None:
            log_debug("Subscription", f"Dropping event for unknown SID {sid}")
            return False

        sub.last_event = payload
        callbacks = [callback for callback, _ in sub.listeners.values()]
        for callback in callbacks:
            self._invoke(callback, payload)
        return True

    def _lookup_sid(self, sid: str) -> Optional[_Subscription]:
        sub = self._by_sid.get(sid)
        if sub is not None:
            return sub

        retired = self._retired.get(sid)
        if retired is None:
            return None
        sub, deadline = retired
        if time.monotonic() > deadline:
            del self._retired[sid]
            return None
        return sub

    def _invoke(self, callback: EventListener, payload: str):
        try:
            result = callback(payload)
        except Exception as e:
            log_error("Subscription", f"Listener error: {e}")
            return
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._callback_tasks.add(task)
            task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: asyncio.Task):
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log_error("Subscription", f"Listener error: {task.exception()}")

    # ============== Renew Loop ==============

    async def _run(self, sub: _Subscription):
        """Subscribe, renew before expiry, tear down when the last listener leaves"""
        loop = asyncio.get_running_loop()
        try:
            while True:
                try:
                    sid, lease = await self._client.subscribe(sub.endpoint, sub.sid)
                except SubscriptionError as e:
                    action = "Renewal" if sub.sid else "Subscription"
                    log_warning("Subscription", f"{action} failed for {sub.endpoint}: {e.message}")
                    await self._fail(sub, e.message)
                    return

                self._apply_lease(sub, sid)
                deadline = loop.time() + max(lease - self._renew_margin, self._min_wait)

                while True:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        break
                    try:
                        await asyncio.wait_for(sub.stop.wait(), remaining)
                    except asyncio.TimeoutError:
                        break
                    if self._confirm_teardown(sub):
                        await self._send_unsubscribe(sub.endpoint, sub.sid)
                        return

                sub.state = SubscriptionState.RENEWING
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_error("Subscription", f"Renew loop for {sub.endpoint} crashed: {e}")
            await self._fail(sub, str(e))

    def _apply_lease(self, sub: _Subscription, sid: str):
        """Record a granted SID; a rotated-out SID keeps routing for the grace period"""
        now = time.monotonic()
        if sub.sid and sub.sid != sid:
            self._by_sid.pop(sub.sid, None)
            self._retired[sub.sid] = (sub, now + self._grace_period)
            log_debug("Subscription", f"SID rotated for {sub.endpoint}: {sub.sid} -> {sid}")
        sub.sid = sid
        self._by_sid[sid] = sub
        sub.state = SubscriptionState.ACTIVE

        expired = [old for old, (_, deadline) in self._retired.items() if deadline < now]
        for old in expired:
            del self._retired[old]

    def _confirm_teardown(self, sub: _Subscription) -> bool:
        """
        Re-check emptiness after the stop signal.

        Returns:
            True when the entry was removed and UNSUBSCRIBE must be sent,
            False when a listener re-registered in the meantime
        """
        if sub.listeners:
            sub.stop.clear()
            log_debug("Subscription", f"Teardown of {sub.endpoint} cancelled, listener re-registered")
            return False
        self._remove(sub)
        return True

    async def _fail(self, sub: _Subscription, reason: str):
        """Tear down after a failed SUBSCRIBE; every handle is closed with the reason"""
        self._remove(sub)
        handles = [handle for _, handle in sub.listeners.values()]
        sub.listeners.clear()
        for handle in handles:
            handle._close(reason)
        if sub.sid:
            await self._send_unsubscribe(sub.endpoint, sub.sid)

    def _remove(self, sub: _Subscription):
        sub.state = SubscriptionState.TEARING_DOWN
        if self._subscriptions.get(sub.endpoint) is sub:
            del self._subscriptions[sub.endpoint]
        for sid in [sid for sid, owner in self._by_sid.items() if owner is sub]:
            del self._by_sid[sid]
        for sid in [sid for sid, (owner, _) in self._retired.items() if owner is sub]:
            del self._retired[sid]

    async def _send_unsubscribe(self, endpoint: str, sid: Optional[str]):
        if not sid:
            return
        try:
            await self._client.unsubscribe(endpoint, sid)
        except Exception as e:
            log_warning("Subscription", f"UNSUBSCRIBE {endpoint} failed: {e}")
        log_info("Subscription", f"Unsubscribed from {endpoint}")

    # ============== Lifecycle / Introspection ==============

    async def close(self):
        """Cancel every renew loop and send UNSUBSCRIBE for all active subscriptions"""
        subs = list(self._subscriptions.values())
        for sub in subs:
            if sub.task:
                sub.task.cancel()
        tasks = [sub.task for sub in subs if sub.task]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for sub in subs:
            self._remove(sub)
            for _, handle in sub.listeners.values():
                handle._close("registry closed")
            sub.listeners.clear()
        await asyncio.gather(*(self._send_unsubscribe(sub.endpoint, sub.sid) for sub in subs))

    def endpoints(self) -> List[str]:
        return list(self._subscriptions)

    def state(self, endpoint: str) -> Optional[SubscriptionState]:
        sub = self._subscriptions.get(endpoint)
        return sub.state if sub else None

    def sid(self, endpoint: str) -> Optional[str]:
        sub = self._subscriptions.get(endpoint)
        return sub.sid if sub else None

    def listener_count(self, endpoint: str) -> int:
        sub = self._subscriptions.get(endpoint)
        return len(sub.listeners) if sub else 0
