import asyncio
import socket

import pytest

from common.messages import announce, decode, encode, who_is
from server.broadcast import Announcer
from server.netscan import NetworkProfile

ME = "5" * 32
OTHER = "9" * 32


def free_udp_port():
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
    finally:
        s.close()


def profile():
    return NetworkProfile(addresses=["192.168.1.10"], broadcasts=["127.0.0.1"], primary="192.168.1.10")


class Collector(asyncio.DatagramProtocol):
    def __init__(self):
        self.queue = asyncio.Queue()

    def datagram_received(self, data, addr):
        self.queue.put_nowait((data, addr))


def test_probe_gets_unicast_announce():
    port = free_udp_port()

    async def scenario():
        loop = asyncio.get_running_loop()
        announcer = Announcer(profile(), ME, lambda *a: None, port=port, interval=5.0)
        await announcer.start()
        transport, collector = await loop.create_datagram_endpoint(Collector, local_addr=("127.0.0.1", 0))
        try:
            transport.sendto(encode(who_is()), ("127.0.0.1", port))
            data, addr = await asyncio.wait_for(collector.queue.get(), 1.0)
            return decode(data), addr
        finally:
            transport.close()
            announcer.stop()

    msg, addr = asyncio.run(scenario())
    assert msg.is_announce
    assert msg.address == "192.168.1.10"
    assert msg.identity == ME
    assert addr[1] == port


def test_foreign_announce_reports_conflict():
    conflicts = []
    announcer = Announcer(profile(), ME, lambda *a: conflicts.append(a), port=0)

    announcer.on_datagram(encode(announce("192.168.1.20", OTHER)), ("192.168.1.20", 41234))

    assert conflicts == [("192.168.1.20", OTHER)]


@pytest.mark.parametrize(
    "data",
    [encode(announce("192.168.1.10", ME)), b"garbage", b"QUEUE_SERVER_HERE|1.2.3.4"],
)
def test_own_or_malformed_datagram_is_not_a_conflict(data):
    conflicts = []
    announcer = Announcer(profile(), ME, lambda *a: conflicts.append(a), port=0)

    announcer.on_datagram(data, ("127.0.0.1", 50000))

    assert conflicts == []


def test_periodic_broadcast_until_stopped():
    port = free_udp_port()

    async def scenario():
        announcer = Announcer(profile(), ME, lambda *a: None, port=port, interval=0.05)
        sent = []
        original = announcer.send_broadcast

        def counting():
            sent.append(1)
            original()

        announcer.send_broadcast = counting
        await announcer.start()
        await asyncio.sleep(0.28)
        announcer.stop()
        ticks = len(sent)
        await asyncio.sleep(0.15)
        return ticks, len(sent)

    ticks, after_stop = asyncio.run(scenario())
    assert ticks >= 4
    assert after_stop == ticks


def test_self_broadcast_is_ignored_on_the_wire():
    port = free_udp_port()
    conflicts = []

    async def scenario():
        announcer = Announcer(profile(), ME, lambda *a: conflicts.append(a), port=port, interval=0.05)
        await announcer.start()
        await asyncio.sleep(0.2)
        announcer.stop()

    asyncio.run(scenario())
    assert conflicts == []


def test_stop_is_idempotent():
    port = free_udp_port()

    async def scenario():
        announcer = Announcer(profile(), ME, lambda *a: None, port=port)
        await announcer.start()
        assert announcer.running
        announcer.stop()
        announcer.stop()
        return announcer

    announcer = asyncio.run(scenario())
    assert not announcer.running


def test_stop_before_start():
    announcer = Announcer(profile(), ME, lambda *a: None, port=0)
    announcer.stop()
    announcer.stop()
