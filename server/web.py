import asyncio

from aiohttp import WSMsgType, web

from common.config import BIND_ADDRESS, HTTP_PORT, PUBLIC_DIR
from common.log import log
from server.counter import parse_command


async def _push(ws, value):
    try:
        await ws.send_json({"value": value})
    except ConnectionResetError as e:
        log("web", "-", "WS_PUSH_FAIL", "DEBUG", error=e)


def schedule_push(ws, value, pending):
    """Push `value` in the background; `pending` holds the task until it finishes."""
    task = asyncio.ensure_future(_push(ws, value))
    pending.add(task)

    def done(t):
        pending.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            log("web", "-", "WS_PUSH_FAIL", "WARN", error=repr(exc))

    task.add_done_callback(done)
    return task


def build_app(counter, *, public_dir=PUBLIC_DIR, address=None, identity=None):
    app = web.Application()

    async def handle_index(request: web.Request) -> web.FileResponse:
        return web.FileResponse(public_dir / "display.html")

    async def handle_state(request: web.Request) -> web.Response:
        return web.json_response({
            "value": counter.current_value(),
            "address": address,
            "identity": identity,
        })

    async def handle_ws(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        peer = request.remote
        log("web", "-", "WS_OPEN", addr=peer)

        pending = set()

        def on_value(value):
            # skip sockets that went away between two publishes
            if ws.closed:
                return
            schedule_push(ws, value, pending)

        unsubscribe = counter.subscribe(on_value)
        try:
            await ws.send_json({"value": counter.current_value()})
            async for msg in ws:
                if msg.type != WSMsgType.TEXT:
                    continue
                name, value = parse_command(msg.data)
                if name is None:
                    log("web", "-", "WS_BAD_FRAME", "WARN", addr=peer)
                    continue
                counter.apply(name, value)
        finally:
            unsubscribe()
            for task in list(pending):
                task.cancel()
            log("web", "-", "WS_CLOSE", addr=peer)
        return ws

    app.router.add_get("/", handle_index)
    app.router.add_get("/ws", handle_ws)
    app.router.add_get("/api/state", handle_state)
    app.router.add_static("/", public_dir)
    return app


class QueueService:
    """Counter push channel + static files on one HTTP listener."""

    def __init__(self, counter, *, host=BIND_ADDRESS, port=HTTP_PORT, public_dir=PUBLIC_DIR,
                 address=None, identity=None):
        self.counter = counter
        self.host = host
        self.port = port
        self.app = build_app(counter, public_dir=public_dir, address=address, identity=identity)
        self._runner = None

    @property
    def bound_port(self):
        if self._runner is None or not self._runner.addresses:
            return None
        return self._runner.addresses[0][1]

    async def start(self):
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        log("web", "-", "SERVICE_LISTEN", "OK", addr=(self.host, self.bound_port))
        print(f"Queue server on http://localhost:{self.bound_port}", flush=True)
        print(f"  Admin   : http://localhost:{self.bound_port}/admin.html", flush=True)
        print(f"  Display : http://localhost:{self.bound_port}/display.html", flush=True)

    async def stop(self):
        if self._runner is None:
            return
        runner, self._runner = self._runner, None
        await runner.cleanup()
        log("web", "-", "SERVICE_STOP")
