import os
import socket
import subprocess
import sys
import time
from pathlib import Path

import pytest

BUFFER_SIZE = 4096


def free_port(kind):
    s = socket.socket(socket.AF_INET, kind)
    try:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
    finally:
        s.close()


def udp_request(sock, addr, payload, timeout=0.4):
    sock.settimeout(timeout)
    sock.sendto(payload, addr)
    try:
        data, raddr = sock.recvfrom(BUFFER_SIZE)
        return data.decode(), raddr
    except (socket.timeout, TimeoutError, ConnectionResetError):
        return None, None


@pytest.fixture(scope="module")
def project_root():
    return Path(__file__).resolve().parents[1]


@pytest.fixture
def ports():
    return {"discovery": free_port(socket.SOCK_DGRAM), "http": free_port(socket.SOCK_STREAM)}


def server_env(ports, **extra):
    env = dict(os.environ)
    env.update({
        "QUEUE_DISCOVERY_PORT": str(ports["discovery"]),
        "PORT": str(ports["http"]),
        "QUEUE_BIND": "127.0.0.1",
        "QUEUE_EXTRA_TARGETS": "127.0.0.1",
        "NO_COLOR": "1",
    })
    env.update(extra)
    return env


def start_server(project_root: Path, ports, stdout=subprocess.DEVNULL, **extra_env):
    cmd = [sys.executable, "-u", "-m", "server.server"]
    return subprocess.Popen(
        cmd,
        cwd=str(project_root),
        env=server_env(ports, **extra_env),
        stdin=subprocess.DEVNULL,   # yielding instance exits on EOF
        stdout=stdout,
        stderr=subprocess.STDOUT if stdout is subprocess.PIPE else subprocess.DEVNULL,
        text=True,
    )


def stop_server(proc: subprocess.Popen):
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=2.0)
    except subprocess.TimeoutExpired:
        proc.kill()


def wait_for_announcer(port, timeout_s=8.0):
    """WHO_IS on loopback until someone answers with an ANNOUNCE."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        deadline = time.time() + timeout_s
        while time.time() < deadline:
            reply, _ = udp_request(sock, ("127.0.0.1", port), b"WHO_IS_SERVER", timeout=0.5)
            if reply and reply.startswith("QUEUE_SERVER_HERE|"):
                return reply
            time.sleep(0.1)
        return None
    finally:
        sock.close()


def http_port_open(port):
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.settimeout(0.5)
    try:
        return s.connect_ex(("127.0.0.1", port)) == 0
    finally:
        s.close()


def test_first_instance_announces_and_serves(project_root, ports):
    proc = start_server(project_root, ports)
    try:
        reply = wait_for_announcer(ports["discovery"])
        assert reply is not None, "Server never answered WHO_IS"
        assert len(reply.split("|")) == 3
        assert http_port_open(ports["http"])
    finally:
        stop_server(proc)


def test_late_instance_yields_to_running_server(project_root, ports):
    first = start_server(project_root, ports)
    try:
        assert wait_for_announcer(ports["discovery"]) is not None

        # loopback unicast to the shared port would reach only one of the two
        # wildcard sockets; rely on the WHO_IS reply alone
        second = start_server(project_root, ports, stdout=subprocess.PIPE, QUEUE_LISTEN_ANNOUNCE="0")
        try:
            out, _ = second.communicate(timeout=10.0)
        finally:
            stop_server(second)

        assert second.returncode == 0
        assert "event=PEER_FOUND" in out
        assert "event=ROLE_YIELDING" in out
        assert "SERVICE_LISTEN" not in out
        assert "already running" in out

        # first instance is untouched
        assert first.poll() is None
        assert wait_for_announcer(ports["discovery"], timeout_s=2.0) is not None
    finally:
        stop_server(first)


def test_simultaneous_start_leaves_one_server(project_root, ports):
    procs = [start_server(project_root, ports) for _ in range(2)]
    try:
        assert wait_for_announcer(ports["discovery"]) is not None

        deadline = time.time() + 8.0
        while time.time() < deadline:
            if sum(p.poll() is None for p in procs) == 1:
                break
            time.sleep(0.2)

        alive = [p for p in procs if p.poll() is None]
        assert len(alive) == 1
        assert http_port_open(ports["http"])
    finally:
        for p in procs:
            stop_server(p)
