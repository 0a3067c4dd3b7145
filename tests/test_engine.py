"""
Engine lifecycle tests against real loopback sockets.
"""

import socket
import unittest
from unittest.mock import Mock

from devproxy import ProxyEngine
from devproxy.engine import EngineState
from devproxy.errors import BindFailure, DuplicateName, InvalidName
from devproxy.models import RouteStatus
from devproxy.ports import PortAllocator


def make_engine(**kwargs) -> ProxyEngine:
    # No default ports: tests never grab 9000-9100 from a developer's machine
    kwargs.setdefault("default_ports", ())
    return ProxyEngine(**kwargs)


class EngineLifecycleTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.engine = make_engine()
        self.events = []
        self.engine.on_event(self.events.append)

    async def asyncTearDown(self):
        await self.engine.stop()

    def event_types(self):
        return [event.type for event in self.events]

    async def test_start_and_stop(self):
        result = await self.engine.start()
        self.assertTrue(result.ok)
        self.assertEqual(result.port, self.engine.port)
        self.assertEqual(self.engine.state, EngineState.RUNNING)
        self.assertTrue(self.engine.get_state().running)

        stopped = await self.engine.stop()
        self.assertTrue(stopped.ok)
        self.assertEqual(self.engine.state, EngineState.STOPPED)
        self.assertIsNone(self.engine.port)
        state = self.engine.get_state()
        self.assertFalse(state.running)
        self.assertIsNone(state.port)
        self.assertEqual(self.event_types(), ["started", "stopped"])

    async def test_start_is_idempotent(self):
        first = await self.engine.start()
        second = await self.engine.start()
        self.assertEqual(first.port, second.port)
        self.assertEqual(self.event_types(), ["started"])

    async def test_stop_when_stopped_is_noop(self):
        result = await self.engine.stop()
        self.assertTrue(result.ok)
        self.assertEqual(self.events, [])

    async def test_restart_after_stop(self):
        await self.engine.start()
        await self.engine.stop()
        result = await self.engine.start()
        self.assertTrue(result.ok)
        self.assertTrue(self.engine.running)

    async def test_preferred_port_used_when_free(self):
        port = PortAllocator().ephemeral()
        result = await self.engine.start(port)
        self.assertEqual(result.port, port)

    async def test_busy_preferred_port_falls_back(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen(1)
            busy_port = busy.getsockname()[1]
            result = await self.engine.start(busy_port)
        self.assertTrue(result.ok)
        self.assertNotEqual(result.port, busy_port)

    async def test_bind_failure_reports_error(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen(1)
            busy_port = busy.getsockname()[1]
            # Allocator loses the race: it reports a port that is already taken
            allocator = Mock(spec=PortAllocator)
            allocator.pick.return_value = busy_port
            engine = make_engine(allocator=allocator)
            events = []
            engine.on_event(events.append)

            with self.assertLogs("devproxy.engine", level="ERROR"):
                result = await engine.start()

        self.assertFalse(result.ok)
        self.assertIn(f"Failed to listen on port {busy_port}", result.error)
        self.assertEqual(engine.state, EngineState.STOPPED)
        self.assertIsNone(engine.port)
        self.assertEqual([e.type for e in events], ["error"])
        self.assertEqual(events[0].error, result.error)

    async def test_context_manager(self):
        async with make_engine() as engine:
            self.assertTrue(engine.running)
            await engine.add_route("web", 3000)
        self.assertFalse(engine.running)
        self.assertEqual(engine.get_routes(), [])


class EngineRouteTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.engine = make_engine()
        self.events = []
        self.engine.on_event(self.events.append)

    async def asyncTearDown(self):
        await self.engine.stop()

    async def test_add_route_starts_proxy(self):
        route = await self.engine.add_route("web", 3000)
        self.assertTrue(self.engine.running)
        self.assertEqual(route.url, f"http://web.localhost:{self.engine.port}")
        self.assertEqual(route.target, "127.0.0.1:3000")
        self.assertEqual(route.status, RouteStatus.RUNNING)
        self.assertEqual([e.type for e in self.events], ["started", "route:added"])
        self.assertEqual(self.events[1].route.name, "web")

    async def test_add_route_with_host_and_task(self):
        route = await self.engine.add_route("api", 8000, task_id="task-1", target_host="localhost")
        self.assertEqual(route.target, "localhost:8000")
        self.assertEqual(route.task_id, "task-1")

    async def test_invalid_name_does_not_start(self):
        with self.assertRaises(InvalidName):
            await self.engine.add_route("Bad_Name", 3000)
        self.assertEqual(self.engine.state, EngineState.STOPPED)
        self.assertEqual(self.events, [])

    async def test_invalid_port(self):
        with self.assertRaises(ValueError):
            await self.engine.add_route("web", 70000)

    async def test_duplicate_name(self):
        await self.engine.add_route("web", 3000)
        with self.assertRaises(DuplicateName):
            await self.engine.add_route("web", 4000)
        self.assertEqual(self.engine.get_route("web").target_port, 3000)

    async def test_bind_failure_propagates_from_add_route(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen(1)
            allocator = Mock(spec=PortAllocator)
            allocator.pick.return_value = busy.getsockname()[1]
            engine = make_engine(allocator=allocator)
            with self.assertLogs("devproxy.engine", level="ERROR"):
                with self.assertRaises(BindFailure):
                    await engine.add_route("web", 3000)
        self.assertEqual(engine.get_routes(), [])

    async def test_event_order(self):
        await self.engine.start()
        await self.engine.add_route("web", 3000)
        self.assertTrue(self.engine.update_route_status("web", RouteStatus.STOPPED))
        self.assertTrue(self.engine.remove_route("web"))
        await self.engine.stop()
        self.assertEqual(
            [e.type for e in self.events],
            ["started", "route:added", "route:status", "route:removed", "stopped"],
        )
        self.assertEqual(self.events[2].route.status, RouteStatus.STOPPED)

    async def test_unknown_route_operations(self):
        self.assertFalse(self.engine.remove_route("missing"))
        self.assertFalse(self.engine.update_route_status("missing", "stopped"))
        self.assertIsNone(self.engine.get_route("missing"))
        self.assertEqual(self.events, [])

    async def test_getters_return_copies(self):
        await self.engine.add_route("web", 3000)
        route = self.engine.get_route("web")
        route.status = RouteStatus.ERROR
        self.assertEqual(self.engine.get_route("web").status, RouteStatus.RUNNING)
        self.engine.get_routes()[0].target_port = 1
        self.assertEqual(self.engine.get_route("web").target_port, 3000)

    async def test_stop_clears_routes(self):
        await self.engine.add_route("web", 3000)
        await self.engine.add_route("api", 8000)
        await self.engine.stop()
        self.assertEqual(self.engine.get_routes(), [])
        self.assertEqual(self.engine.get_state().routes, [])

    async def test_state_lists_routes(self):
        await self.engine.add_route("web", 3000)
        data = self.engine.get_state().to_dict()
        self.assertTrue(data["running"])
        self.assertEqual(data["port"], self.engine.port)
        self.assertEqual([r["name"] for r in data["routes"]], ["web"])

    async def test_unsubscribe(self):
        calls = []
        unsubscribe = self.engine.on_event(calls.append)
        unsubscribe()
        await self.engine.start()
        self.assertEqual(calls, [])


if __name__ == "__main__":
    unittest.main()
