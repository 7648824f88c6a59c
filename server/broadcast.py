import asyncio
import socket

from common.config import ANNOUNCE_INTERVAL, DISCOVERY_PORT
from common.log import log
from common.messages import announce, decode, encode
from common.syslog import LOG_INFO, LOG_WARN


def bind_discovery_socket(port, host="0.0.0.0") -> socket.socket:
    """Broadcast-capable UDP socket on the shared discovery port."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            except OSError:
                pass
        sock.bind((host, port))
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


class _AnnounceProtocol(asyncio.DatagramProtocol):
    def __init__(self, announcer):
        self.announcer = announcer

    def datagram_received(self, data, addr):
        self.announcer.on_datagram(data, addr)

    def error_received(self, exc):
        log("announcer", self.announcer.short_id, "ANNOUNCE_SOCKET_ERROR", "DEBUG", error=exc)


class Announcer:
    """
    Discovery listener for the elected server on DISCOVERY_PORT.
    - answers WHO_IS with a unicast ANNOUNCE
    - broadcasts its own ANNOUNCE every `interval` seconds
    - reports a foreign ANNOUNCE through on_conflict(address, identity)
    """

    def __init__(self, profile, identity, on_conflict, *, port=DISCOVERY_PORT, interval=ANNOUNCE_INTERVAL,
                 announce_port=None):
        self.profile = profile
        self.identity = identity
        self.short_id = identity[:8]
        self.on_conflict = on_conflict
        self.port = port
        self.interval = interval
        # destination port of ANNOUNCE broadcasts, normally the port we listen on
        self.announce_port = announce_port or port

        self.transport = None
        self._timer = None
        self._stopped = False
        self._payload = encode(announce(profile.primary, identity))

    @property
    def running(self) -> bool:
        return self.transport is not None and not self._stopped

    async def start(self):
        loop = asyncio.get_running_loop()
        sock = bind_discovery_socket(self.port)
        self.transport, _ = await loop.create_datagram_endpoint(
            lambda: _AnnounceProtocol(self), sock=sock
        )

        log("announcer", self.short_id, "ANNOUNCER_START", "OK",
            addr=f"0.0.0.0:{self.port}", primary=self.profile.primary,
            broadcasts=",".join(self.profile.broadcasts), interval=self.interval)
        LOG_INFO("ANNOUNCER_START", node_id=self.short_id, event="ANNOUNCER_START",
                 addr=f"0.0.0.0:{self.port}")

        self._tick()

    def _tick(self):
        if self._stopped:
            return
        self.send_broadcast()
        self._timer = asyncio.get_running_loop().call_later(self.interval, self._tick)

    def send_broadcast(self):
        for ip in self.profile.broadcasts:
            self._send(self._payload, (ip, self.announce_port))
        log("announcer", self.short_id, "ANNOUNCE_BCAST_TX", "DEBUG", targets=len(self.profile.broadcasts))

    def send_unicast(self, addr):
        log("announcer", self.short_id, "ANNOUNCE_UNICAST_TX", addr=addr)
        self._send(self._payload, addr)

    def _send(self, data, addr):
        if self.transport is None or self.transport.is_closing():
            return
        try:
            self.transport.sendto(data, addr)
        except OSError as e:
            log("announcer", self.short_id, "ANNOUNCE_TX_FAIL", "WARN", addr=addr, error=e)
            LOG_WARN("ANNOUNCE_TX_FAIL", node_id=self.short_id, event="ANNOUNCE_TX_FAIL", addr=addr)

    def on_datagram(self, data, addr):
        if self._stopped:
            return

        msg = decode(data)
        if msg is None:
            log("announcer", self.short_id, "ANNOUNCE_RX_MALFORMED", "DEBUG", addr=addr)
            return

        if msg.is_probe:
            self.send_unicast(addr)
            return

        if msg.identity == self.identity:
            return

        log("announcer", self.short_id, "ANNOUNCE_CONFLICT", "WARN",
            peer=msg.address, peer_id=msg.identity[:8], addr=addr)
        LOG_WARN("ANNOUNCE_CONFLICT", node_id=self.short_id, event="ANNOUNCE_CONFLICT",
                 peer=msg.address, addr=addr)
        self.on_conflict(msg.address, msg.identity)

    def stop(self):
        if self._stopped:
            return
        self._stopped = True

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if self.transport is not None:
            try:
                self.transport.close()
            except (OSError, RuntimeError):
                pass

        log("announcer", self.short_id, "ANNOUNCER_STOP")
        LOG_INFO("ANNOUNCER_STOP", node_id=self.short_id, event="ANNOUNCER_STOP")
