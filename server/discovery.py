"""
server.discovery

Startup probe: "is a queue server already running on this LAN?"

- WHO_IS_SERVER is sent to every broadcast and LAN address of the profile,
  `retries` rounds, `interval` seconds apart.
- The first ANNOUNCE carrying a foreign identity resolves PeerFound.
- If none arrives within `timeout` seconds the outcome is NoPeerFound.
- Probe loop and timeout run side by side; whichever resolves first wins.
- With `listen` on, a second socket bound to the shared discovery port
  catches the running server's periodic ANNOUNCE, so a lost WHO_IS reply
  does not make us claim the role.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from common.config import (
    DISCOVERY_PORT,
    LISTEN_FOR_ANNOUNCE,
    PROBE_INTERVAL,
    PROBE_RETRIES,
    PROBE_TIMEOUT,
)
from common.log import log
from common.messages import decode, encode, who_is
from common.syslog import LOG_INFO, LOG_WARN
from server.broadcast import bind_discovery_socket


@dataclass(frozen=True)
class ElectionOutcome:
    peer_address: Optional[str] = None

    @property
    def peer_found(self) -> bool:
        return self.peer_address is not None


NO_PEER_FOUND = ElectionOutcome()


class _ProbeProtocol(asyncio.DatagramProtocol):
    def __init__(self, identity: str, on_peer: Callable[[str], None]):
        self.identity = identity
        self.on_peer = on_peer
        self.transport = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data: bytes, addr: Tuple[str, int]):
        msg = decode(data)
        if msg is None or not msg.is_announce:
            return

        # our own announce looped back
        if msg.identity == self.identity:
            log("probe", self.identity[:8], "PROBE_SELF_ECHO", "DEBUG", addr=addr)
            return

        self.on_peer(msg.address)

    def error_received(self, exc):
        log("probe", self.identity[:8], "PROBE_SOCKET_ERROR", "DEBUG", error=exc)


async def find_peer(
    profile,
    identity: str,
    on_result: Optional[Callable[[ElectionOutcome], None]] = None,
    *,
    port: int = DISCOVERY_PORT,
    retries: int = PROBE_RETRIES,
    interval: float = PROBE_INTERVAL,
    timeout: float = PROBE_TIMEOUT,
    listen: bool = LISTEN_FOR_ANNOUNCE,
    listen_host: str = "0.0.0.0",
) -> ElectionOutcome:
    loop = asyncio.get_running_loop()
    result = loop.create_future()
    short_id = identity[:8]

    def resolve(outcome: ElectionOutcome):
        # single assignment: the first resolution wins
        if result.done():
            return
        result.set_result(outcome)
        if on_result is not None:
            on_result(outcome)

    def on_peer(addr):
        resolve(ElectionOutcome(addr))

    transport, _ = await loop.create_datagram_endpoint(
        lambda: _ProbeProtocol(identity, on_peer),
        local_addr=("0.0.0.0", 0),
        allow_broadcast=True,
    )

    listener = None
    if listen:
        try:
            listener, _ = await loop.create_datagram_endpoint(
                lambda: _ProbeProtocol(identity, on_peer),
                sock=bind_discovery_socket(port, listen_host),
            )
        except OSError as e:
            # WHO_IS replies still arrive on the probe socket
            log("probe", short_id, "PROBE_LISTEN_FAIL", "WARN", addr=(listen_host, port), error=e)

    targets = profile.probe_targets()
    data = encode(who_is())

    async def probe_loop():
        for attempt in range(1, retries + 1):
            if result.done():
                return
            for ip in targets:
                try:
                    transport.sendto(data, (ip, port))
                except OSError as e:
                    log("probe", short_id, "PROBE_TX_FAIL", "WARN", addr=(ip, port), error=e)
            log("probe", short_id, "DISCOVERY_PROBE", attempt=attempt, targets=len(targets))
            await asyncio.sleep(interval)

    probes = asyncio.ensure_future(probe_loop())
    timer = loop.call_later(timeout, resolve, NO_PEER_FOUND)

    try:
        outcome = await result
    finally:
        timer.cancel()
        probes.cancel()
        transport.close()
        if listener is not None:
            listener.close()

    if outcome.peer_found:
        log("probe", short_id, "PEER_FOUND", "WARN", peer=outcome.peer_address)
        LOG_WARN("PEER_FOUND", node_id=short_id, event="PEER_FOUND", peer=outcome.peer_address)
    else:
        log("probe", short_id, "NO_PEER_FOUND", "OK", timeout=timeout)
        LOG_INFO("NO_PEER_FOUND", node_id=short_id, event="NO_PEER_FOUND")
    return outcome
