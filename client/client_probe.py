import socket
import sys

from common.config import BUFFER_SIZE, DISCOVERY_PORT
from common.messages import decode, encode, who_is

TARGET = (sys.argv[1] if len(sys.argv) > 1 else "255.255.255.255", DISCOVERY_PORT)

sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
sock.settimeout(1.0)

sock.sendto(encode(who_is()), TARGET)

try:
    data, addr = sock.recvfrom(BUFFER_SIZE)
    print("Reply from", addr, "->", decode(data))
except socket.timeout:
    print("No queue server answered on", TARGET)
finally:
    sock.close()
