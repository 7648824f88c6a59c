import os
from pathlib import Path

BUFFER_SIZE = 4096

# Discovery wire tags
WHO_IS = "WHO_IS_SERVER"
ANNOUNCE = "QUEUE_SERVER_HERE"

# Discovery / election
DISCOVERY_PORT = int(os.getenv("QUEUE_DISCOVERY_PORT", "41234"))
PROBE_RETRIES = int(os.getenv("QUEUE_PROBE_RETRIES", "4"))
PROBE_INTERVAL = float(os.getenv("QUEUE_PROBE_INTERVAL", "0.35"))   # seconds between WHO_IS rounds
PROBE_TIMEOUT = float(os.getenv("QUEUE_PROBE_TIMEOUT", "1.8"))      # overall wait for an ANNOUNCE
ANNOUNCE_INTERVAL = float(os.getenv("QUEUE_ANNOUNCE_INTERVAL", "0.8"))

LIMITED_BROADCAST = "255.255.255.255"
LOOPBACK = "127.0.0.1"

# home/office private blocks
LAN_PREFIXES = ("192.168.", "10.")

# container / VM bridges (VirtualBox host-only by default)
VIRTUAL_ADAPTER_PREFIXES = tuple(
    p.strip()
    for p in os.getenv("QUEUE_EXCLUDE_PREFIXES", "192.168.56.").split(",")
    if p.strip()
)

# Service
HTTP_PORT = int(os.getenv("PORT", "3000"))
BIND_ADDRESS = os.getenv("QUEUE_BIND", "0.0.0.0")
PUBLIC_DIR = Path(__file__).resolve().parents[1] / "public"

COUNTER_MODULO = 100

# Syslog
SYSLOG_ENABLED = os.getenv("QUEUE_SYSLOG") == "1"
SYSLOG_HOST = os.getenv("QUEUE_SYSLOG_HOST", "auto")
SYSLOG_PORT = int(os.getenv("QUEUE_SYSLOG_PORT", "5514"))
SYSLOG_FACILITY = 16  # local0

# extra unicast/broadcast targets for probes and announces (comma-separated)
EXTRA_TARGETS = tuple(
    t.strip() for t in os.getenv("QUEUE_EXTRA_TARGETS", "").split(",") if t.strip()
)

# startup probe also listens on DISCOVERY_PORT for periodic announces
LISTEN_FOR_ANNOUNCE = os.getenv("QUEUE_LISTEN_ANNOUNCE", "1") == "1"
