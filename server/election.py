import asyncio
from enum import Enum

from common.config import ANNOUNCE_INTERVAL, DISCOVERY_PORT
from common.log import log
from common.syslog import LOG_ERROR, LOG_INFO, LOG_WARN
from server.broadcast import Announcer
from server.discovery import find_peer as _find_peer


class ServerRole(Enum):
    UNELECTED = "UNELECTED"
    ANNOUNCING = "ANNOUNCING"
    YIELDING = "YIELDING"


async def _no_acknowledgment():
    return None


class ElectionController:
    def __init__(
        self,
        identity,
        profile,
        service,
        *,
        discovery_port=DISCOVERY_PORT,
        announce_interval=ANNOUNCE_INTERVAL,
        probe_options=None,
        await_acknowledgment=None,
        find_peer=_find_peer,
        announcer_factory=Announcer,
    ):
        """
        service must provide:
          - await service.start()  (binds the HTTP port, raises OSError on failure)
          - await service.stop()   (no-op when never started)
        await_acknowledgment: coroutine function, returns once the operator
        has read the yield message.
        """
        self.identity = identity
        self.short_id = identity[:8]
        self.profile = profile
        self.service = service
        self.discovery_port = discovery_port
        self.announce_interval = announce_interval
        self.probe_options = dict(probe_options or {})
        self.await_acknowledgment = await_acknowledgment or _no_acknowledgment
        self.find_peer = find_peer
        self.announcer_factory = announcer_factory

        self.role = ServerRole.UNELECTED
        self.peer_address = None
        self.yield_reason = None
        self.announcer = None

        self._released = False
        self._shutdown_task = None
        self._yielded = asyncio.Event()

    async def run(self):
        """Probe, then serve or yield. Returns the final role once the operator acknowledged."""
        try:
            outcome = await self.find_peer(
                self.profile, self.identity, port=self.discovery_port, **self.probe_options
            )

            if outcome.peer_found:
                self.yield_to(outcome.peer_address, "peer found")
            else:
                await self._go_live()

            await self._yielded.wait()
        except asyncio.CancelledError:
            await self.shutdown()
            raise

        self.present_yield()
        await self.await_acknowledgment()
        return self.role

    async def _go_live(self):
        # the HTTP port is only bound once NoPeerFound is confirmed
        try:
            await self.service.start()
        except OSError as e:
            log("election", self.short_id, "SERVICE_BIND_FAIL", "ERROR", error=e)
            LOG_ERROR("SERVICE_BIND_FAIL", node_id=self.short_id, event="SERVICE_BIND_FAIL", error=e)
            self.yield_to(None, f"bind failed: {e}")
            return

        self.role = ServerRole.ANNOUNCING
        log("election", self.short_id, "ROLE_ANNOUNCING", "OK", primary=self.profile.primary)
        LOG_INFO("ROLE_ANNOUNCING", node_id=self.short_id, event="ROLE_ANNOUNCING",
                 role=self.role.value)

        announcer = self.announcer_factory(
            self.profile,
            self.identity,
            self.on_conflict,
            port=self.discovery_port,
            interval=self.announce_interval,
        )
        try:
            await announcer.start()
        except OSError as e:
            # election already won, keep serving without announcing
            log("election", self.short_id, "ANNOUNCER_BIND_FAIL", "WARN",
                port=self.discovery_port, error=e)
            LOG_WARN("ANNOUNCER_BIND_FAIL", node_id=self.short_id, event="ANNOUNCER_BIND_FAIL")
            return
        self.announcer = announcer

    def on_conflict(self, peer_address, peer_identity):
        if self.role is not ServerRole.ANNOUNCING:
            return

        # both sides see each other's announce; only the lower identity stands down
        if peer_identity > self.identity:
            self.yield_to(peer_address, "conflicting server")
        else:
            log("election", self.short_id, "CONFLICT_KEEP_ROLE", "WARN",
                peer=peer_address, peer_id=peer_identity[:8])

    def yield_to(self, peer_address, reason):
        if self.role is ServerRole.YIELDING:
            return

        self.role = ServerRole.YIELDING
        self.peer_address = peer_address
        self.yield_reason = reason

        log("election", self.short_id, "ROLE_YIELDING", "WARN", peer=peer_address, reason=reason)
        LOG_WARN("ROLE_YIELDING", node_id=self.short_id, event="ROLE_YIELDING",
                 peer=peer_address, reason=reason)

        self._shutdown_task = asyncio.ensure_future(self._shutdown_and_signal())

    async def _shutdown_and_signal(self):
        try:
            await self.shutdown()
        finally:
            self._yielded.set()

    async def shutdown(self):
        """Release announcer and service; each one independently."""
        if self._released:
            return
        self._released = True

        if self.announcer is not None:
            try:
                self.announcer.stop()
            except Exception as e:
                log("election", self.short_id, "ANNOUNCER_STOP_FAIL", "WARN", error=e)

        try:
            await self.service.stop()
        except Exception as e:
            log("election", self.short_id, "SERVICE_STOP_FAIL", "WARN", error=e)

        log("election", self.short_id, "SHUTDOWN_DONE")

    def present_yield(self):
        if self.peer_address:
            print(f"[{self.short_id}] A queue server is already running at {self.peer_address} "
                  f"({self.yield_reason}).", flush=True)
        else:
            print(f"[{self.short_id}] Cannot start the queue server: {self.yield_reason}.", flush=True)
        print(f"[{self.short_id}] Press Enter to exit.", flush=True)
