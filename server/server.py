import asyncio
import sys
import uuid

from common.config import BIND_ADDRESS, HTTP_PORT
from common.log import log
from server.counter import CounterService
from server.election import ElectionController
from server.netscan import scan
from server.web import QueueService


async def wait_for_enter():
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, sys.stdin.readline)


async def serve(identity, port=HTTP_PORT, host=BIND_ADDRESS):
    profile = scan()
    log("server", identity[:8], "STARTUP", primary=profile.primary,
        addresses=",".join(profile.addresses) or "-", broadcasts=",".join(profile.broadcasts))

    counter = CounterService()
    service = QueueService(counter, host=host, port=port, address=profile.primary, identity=identity)
    controller = ElectionController(identity, profile, service, await_acknowledgment=wait_for_enter)
    return await controller.run()


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv

    if len(argv) > 1:
        print("Usage: python -m server.server [HTTP_PORT]")
        return 2

    port = HTTP_PORT
    if argv:
        try:
            port = int(argv[0])
        except ValueError:
            print("Usage: python -m server.server [HTTP_PORT]")
            return 2

    identity = uuid.uuid4().hex
    try:
        asyncio.run(serve(identity, port))
    except KeyboardInterrupt:
        log("server", identity[:8], "INTERRUPTED")
    return 0


if __name__ == "__main__":
    sys.exit(main())
