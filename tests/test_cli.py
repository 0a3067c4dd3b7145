"""
Tests for the devproxy command line.
"""

import argparse
import socket
import unittest
from unittest.mock import AsyncMock, patch

from devproxy import __version__
from devproxy.main import build_parser, main, parse_route_arg


class ParseRouteArgTests(unittest.TestCase):
    def test_valid(self):
        self.assertEqual(parse_route_arg("web=3000"), ("web", ("127.0.0.1", 3000)))
        self.assertEqual(parse_route_arg("api=localhost:8000"), ("api", ("localhost", 8000)))
        self.assertEqual(parse_route_arg("x=http://10.0.0.1:80"), ("x", ("10.0.0.1", 80)))

    def test_invalid(self):
        for value in ("web", "Web=3000", "web=", "web=nope", "=3000"):
            with self.assertRaises(argparse.ArgumentTypeError):
                parse_route_arg(value)


class MainTests(unittest.TestCase):
    def test_no_command_prints_help(self):
        with patch("sys.stdout"):
            self.assertEqual(main([]), 1)

    def test_version(self):
        with patch("sys.stdout") as stdout:
            with self.assertRaises(SystemExit) as ctx:
                main(["--version"])
        self.assertEqual(ctx.exception.code, 0)
        written = "".join(call.args[0] for call in stdout.write.call_args_list)
        self.assertIn(__version__, written)

    def test_slug(self):
        with patch("devproxy.main.console") as console:
            self.assertEqual(main(["slug", "My Task_1"]), 0)
        console.print.assert_called_once_with("my-task-1")

    def test_ports(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen(1)
            port = busy.getsockname()[1]
            with patch("devproxy.main.console"), patch("devproxy.main.print_info") as print_info:
                self.assertEqual(main(["ports", "--port", str(port)]), 0)
        message = print_info.call_args.args[0]
        self.assertTrue(message.startswith("Selected port: "))
        self.assertNotEqual(message, f"Selected port: {port}")

    def test_serve_routes_from_flags(self):
        args = build_parser().parse_args(["serve", "--port", "9100", "--route", "web=3000", "--route", "api=8000"])
        self.assertEqual(args.port, 9100)
        self.assertEqual(args.route, [("web", ("127.0.0.1", 3000)), ("api", ("127.0.0.1", 8000))])

    def test_serve_passes_config_to_engine(self):
        serve = AsyncMock(return_value=True)
        with (
            patch("devproxy.main.serve", serve),
            patch("devproxy.main.setup_logging"),
            patch("devproxy.main.ProxyConfig.load") as load,
        ):
            from devproxy.config import ProxyConfig

            load.return_value = ProxyConfig(data={"routes": {"web": 3000}})
            self.assertEqual(main(["serve", "--port", "9100", "--route", "api=8000", "--log-requests"]), 0)
        serve.assert_awaited_once_with(9100, {"web": ("127.0.0.1", 3000), "api": ("127.0.0.1", 8000)}, True)

    def test_serve_invalid_config(self):
        with (
            patch("devproxy.main.print_error") as print_error,
            patch("devproxy.main.ProxyConfig.load") as load,
        ):
            from devproxy.config import ProxyConfig

            load.return_value = ProxyConfig(data={"log_level": "LOUD"})
            self.assertEqual(main(["serve"]), 1)
        print_error.assert_any_call("Config validation failed:")


if __name__ == "__main__":
    unittest.main()
