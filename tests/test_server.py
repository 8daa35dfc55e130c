from __future__ import annotations

import asyncio
import json
import os
import socket
import unittest
from datetime import datetime, timezone

import httpx

from debugserver.app import create_app
from debugserver.cli import SHUTDOWN_GRACE_SECONDS, build_server, open_listener
from debugserver.config import ServerConfig
from debugserver.registry import PendingRequestRegistry


class RunningServer:
    """uvicorn serving the app on a real socket, with a pipe as the operator terminal."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self.port = sock.getsockname()[1]
        self.registry = PendingRequestRegistry()
        read_fd, self._write_fd = os.pipe()
        self._operator_input = os.fdopen(read_fd, "r")
        self.app = create_app(operator_input=self._operator_input, registry=self.registry)
        self.server = build_server(self.app, log_level="warning")
        self._task: asyncio.Task[None] | None = None

    @property
    def base_url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    def press_enter(self) -> None:
        os.write(self._write_fd, b"\n")

    async def wait_for_pending(self, count: int, timeout: float = 5.0) -> None:
        deadline = asyncio.get_running_loop().time() + timeout
        while self.registry.pending_count != count:
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError(
                    f"expected {count} pending requests, found {self.registry.pending_count}"
                )
            await asyncio.sleep(0.01)

    async def __aenter__(self) -> "RunningServer":
        self._task = asyncio.create_task(self.server.serve(sockets=[self.sock]))
        while not self.server.started:
            if self._task.done():
                await self._task
                raise AssertionError("server exited during startup")
            await asyncio.sleep(0.01)
        return self

    async def shutdown(self, timeout: float = 10.0) -> None:
        self.server.should_exit = True
        if self._task is not None:
            await asyncio.wait_for(self._task, timeout=timeout)

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()
        os.close(self._write_fd)
        release_trigger = self.app.state.services.release_trigger
        await asyncio.to_thread(release_trigger.join, 5.0)
        self._operator_input.close()
        self.sock.close()


def _parse_timestamp(body: bytes) -> datetime:
    payload = json.loads(body)
    return datetime.strptime(payload["timestamp"], "%Y-%m-%dT%H:%M:%SZ").replace(
        tzinfo=timezone.utc
    )


class HeldResponseScenarioTests(unittest.IsolatedAsyncioTestCase):
    def _client(self, server: RunningServer) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=server.base_url, timeout=httpx.Timeout(5.0, read=None))

    async def test_headers_arrive_before_release_and_body_after(self) -> None:
        async with RunningServer(open_listener("127.0.0.1", 0)) as server:
            async with self._client(server) as client:
                async with client.stream("GET", "/orders/42") as response:
                    self.assertEqual(response.status_code, 200)
                    self.assertEqual(response.headers["content-type"], "text/plain")

                    body_task = asyncio.create_task(response.aread())
                    await asyncio.sleep(2.0)
                    self.assertFalse(body_task.done())
                    self.assertEqual(server.registry.pending_count, 1)

                    released_after = datetime.now(timezone.utc).replace(microsecond=0)
                    server.press_enter()
                    body = await asyncio.wait_for(body_task, timeout=5.0)

        self.assertTrue(body.endswith(b"\n"))
        self.assertGreaterEqual(_parse_timestamp(body), released_after)
        self.assertEqual(server.registry.pending_count, 0)

    async def test_single_release_frees_all_concurrent_requests(self) -> None:
        async with RunningServer(open_listener("127.0.0.1", 0)) as server:
            async with self._client(server) as client:
                requests = [
                    asyncio.create_task(client.get("/b")),
                    asyncio.create_task(client.post("/c", content=b"payload")),
                ]
                await server.wait_for_pending(2)
                await asyncio.sleep(0.2)
                self.assertFalse(any(task.done() for task in requests))

                server.press_enter()
                responses = await asyncio.wait_for(asyncio.gather(*requests), timeout=5.0)

        for response in responses:
            self.assertEqual(response.status_code, 200)
            self.assertEqual(list(response.json()), ["timestamp"])
        self.assertEqual(server.registry.pending_count, 0)
        self.assertEqual(server.registry.total_registered, 2)

    async def test_release_with_nothing_pending_keeps_serving(self) -> None:
        async with RunningServer(open_listener("127.0.0.1", 0)) as server:
            with self.assertLogs("debugserver.release", level="INFO") as logs:
                server.press_enter()
                for _ in range(500):
                    if any("No pending requests" in line for line in logs.output):
                        break
                    await asyncio.sleep(0.01)

            async with self._client(server) as client:
                request = asyncio.create_task(client.delete("/after-empty-release"))
                await server.wait_for_pending(1)
                server.press_enter()
                response = await asyncio.wait_for(request, timeout=5.0)

        self.assertIn("No pending requests", "\n".join(logs.output))
        self.assertEqual(response.status_code, 200)

    async def test_disconnected_client_stays_pending_until_next_release(self) -> None:
        async with RunningServer(open_listener("127.0.0.1", 0)) as server:
            async with self._client(server) as client:
                async with client.stream("GET", "/abandoned") as response:
                    self.assertEqual(response.status_code, 200)
            await asyncio.sleep(0.2)
            self.assertEqual(server.registry.pending_count, 1)

            server.press_enter()
            await server.wait_for_pending(0)

            async with self._client(server) as client:
                request = asyncio.create_task(client.get("/next"))
                await server.wait_for_pending(1)
                server.press_enter()
                response = await asyncio.wait_for(request, timeout=5.0)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(server.registry.total_registered, 2)

    async def test_listens_on_configured_port(self) -> None:
        spare = open_listener("127.0.0.1", 0)
        free_port = spare.getsockname()[1]
        spare.close()
        config = ServerConfig.from_env({"PORT": str(free_port), "HOST": "127.0.0.1"})

        async with RunningServer(open_listener(config.host, config.port)) as server:
            self.assertEqual(server.port, free_port)
            async with self._client(server) as client:
                request = asyncio.create_task(client.get("/"))
                await server.wait_for_pending(1)
                server.press_enter()
                response = await asyncio.wait_for(request, timeout=5.0)

        self.assertEqual(response.status_code, 200)

    async def test_extension_methods_are_held_like_any_other(self) -> None:
        async with RunningServer(open_listener("127.0.0.1", 0)) as server:
            async with self._client(server) as client:
                requests = [
                    asyncio.create_task(client.request("TRACE", "/x")),
                    asyncio.create_task(client.request("PROPFIND", "/dav/collection")),
                ]
                await server.wait_for_pending(2)
                self.assertFalse(any(task.done() for task in requests))

                server.press_enter()
                responses = await asyncio.wait_for(asyncio.gather(*requests), timeout=5.0)

        for response in responses:
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.headers["content-type"], "text/plain")
            self.assertEqual(list(response.json()), ["timestamp"])
        self.assertEqual(server.registry.total_registered, 2)

    async def test_shutdown_does_not_wait_for_held_requests(self) -> None:
        async with RunningServer(open_listener("127.0.0.1", 0)) as server:
            async with self._client(server) as client:
                request = asyncio.create_task(client.get("/held-at-shutdown"))
                await server.wait_for_pending(1)

                await server.shutdown(timeout=SHUTDOWN_GRACE_SECONDS + 5.0)

                request.cancel()
                await asyncio.gather(request, return_exceptions=True)

        self.assertEqual(server.registry.pending_count, 1)
