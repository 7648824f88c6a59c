# Discovery datagrams (UTF-8 text, one message per datagram)
#
# WHO_IS_SERVER                          (probe, any instance -> broadcast)
# QUEUE_SERVER_HERE|<ip>|<identityHex>   (announce, reply or periodic)
#
# Anything else is malformed and dropped by the receiver.

from dataclasses import dataclass
from typing import Optional

from common.config import ANNOUNCE, WHO_IS


@dataclass(frozen=True)
class AnnounceMessage:
    kind: str
    address: Optional[str] = None
    identity: Optional[str] = None

    @property
    def is_probe(self) -> bool:
        return self.kind == WHO_IS

    @property
    def is_announce(self) -> bool:
        return self.kind == ANNOUNCE


def who_is() -> AnnounceMessage:
    return AnnounceMessage(WHO_IS)


def announce(address: str, identity: str) -> AnnounceMessage:
    return AnnounceMessage(ANNOUNCE, address, identity)


def encode(msg: AnnounceMessage) -> bytes:
    if msg.kind == WHO_IS:
        return WHO_IS.encode("utf-8")
    return f"{ANNOUNCE}|{msg.address}|{msg.identity}".encode("utf-8")


def decode(data: bytes) -> Optional[AnnounceMessage]:
    """Parse one datagram; returns None for anything that is not a valid message."""
    try:
        text = data.decode("utf-8").strip()
    except UnicodeDecodeError:
        return None

    if text == WHO_IS:
        return who_is()

    parts = text.split("|")
    if len(parts) != 3 or parts[0] != ANNOUNCE:
        return None

    address, identity = parts[1], parts[2]
    if not address or not identity:
        return None
    return announce(address, identity)
