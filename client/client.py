import asyncio
import json
import sys
import uuid

import aiohttp

from common.config import HTTP_PORT
from server.counter import COMMANDS
from server.discovery import find_peer
from server.netscan import scan


def parse_args(argv):
    """['next', 'goto', '12', 'prev'] -> [('next', None), ('goto', '12'), ('prev', None)]"""
    commands = []
    it = iter(argv)
    for word in it:
        name = word.lower()
        if name not in COMMANDS:
            raise ValueError(f"Unknown command: {word}")
        if name == "goto":
            value = next(it, None)
            if value is None:
                raise ValueError("goto needs a value")
            commands.append((name, value))
        else:
            commands.append((name, None))
    return commands


def frame(name, value=None):
    if name == "goto":
        return json.dumps({"action": "goto", "value": value})
    return json.dumps(name)


class Client:
    def __init__(self, client_id, port=HTTP_PORT):
        self.client_id = client_id
        self.port = port
        self.server_ip = None

    async def discover_server(self):
        # an admin tool never claims the role; the WHO_IS reply is enough
        outcome = await find_peer(scan(), self.client_id, listen=False)
        if not outcome.peer_found:
            raise Exception("No queue server found on this network")
        self.server_ip = outcome.peer_address
        print(f"[{self.client_id[:8]}] Queue server at {self.server_ip}:{self.port}")
        return self.server_ip

    async def _read_value(self, ws):
        msg = await ws.receive_json()
        return msg.get("value")

    async def run_commands(self, ws, commands, out=print):
        """Frames on /ws are fan-out broadcasts: the value read after a send may come from another admin."""
        for name, value in commands:
            await ws.send_str(frame(name, value))
            out(f"{name} sent, current number: {await self._read_value(ws)}")

    async def start(self, commands):
        await self.discover_server()
        url = f"http://{self.server_ip}:{self.port}/ws"

        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(url) as ws:
                print(f"Current number: {await self._read_value(ws)}")

                if commands:
                    await self.run_commands(ws, commands)
                    return

                loop = asyncio.get_running_loop()
                while True:
                    line = await loop.run_in_executor(None, input, ">> ")
                    try:
                        batch = parse_args(line.split())
                    except ValueError as e:
                        print(e)
                        continue
                    await self.run_commands(ws, batch)


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    try:
        commands = parse_args(argv)
    except ValueError as e:
        print(e)
        print("Usage: python -m client.client [next|prev|reset|repeat|goto N] ...")
        return 2

    client = Client(uuid.uuid4().hex)
    try:
        asyncio.run(client.start(commands))
    except (KeyboardInterrupt, EOFError):
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
