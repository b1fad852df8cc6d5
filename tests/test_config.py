import json
import os
import tempfile
import unittest
from unittest.mock import patch

from doubao_bridge import config as config_module
from doubao_bridge.config import get_config, parse_http_addr

ENV_KEYS = ("HTTP_ADDR", "SESSION_CONFIG", "AUTH_TOKEN", "HTTP_CLIENT_TIMEOUT_S", "SHUTDOWN_TIMEOUT_SEC", "DEBUG")


class TestConfig(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.path = os.path.join(self._tmp.name, "config.json")

        env = {k: v for k, v in os.environ.items() if k not in ENV_KEYS}
        patcher = patch.dict(os.environ, env, clear=True)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _write(self, content) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            f.write(content if isinstance(content, str) else json.dumps(content))

    def test_defaults_when_file_missing(self) -> None:
        config = get_config(self.path)

        self.assertEqual(config["host"], "0.0.0.0")
        self.assertEqual(config["port"], 8000)
        self.assertEqual(config["session_config"], "session.json")
        self.assertEqual(config["auth_token"], "")
        self.assertEqual(config["http_client_timeout"], 300)
        self.assertEqual(config["shutdown_timeout"], 10)
        self.assertTrue(config["debug"])

    def test_default_path_is_config_json(self) -> None:
        self.assertEqual(config_module.CONFIG_FILE, "config.json")

    def test_malformed_file_falls_back_to_defaults(self) -> None:
        for content in ("{not json", "[1, 2, 3]"):
            with self.subTest(content=content):
                self._write(content)
                self.assertEqual(get_config(self.path)["port"], 8000)

    def test_file_values_are_used(self) -> None:
        self._write({"port": 9001, "auth_token": " tok ", "debug": False, "http_client_timeout": 60, "extra": 1})

        config = get_config(self.path)

        self.assertEqual(config["port"], 9001)
        self.assertEqual(config["auth_token"], "tok")
        self.assertFalse(config["debug"])
        self.assertEqual(config["http_client_timeout"], 60)
        self.assertEqual(config["extra"], 1)

    def test_environment_overrides_file(self) -> None:
        self._write({"port": 9001, "session_config": "from-file.json", "auth_token": "file"})
        env = {
            "HTTP_ADDR": "127.0.0.1:9100",
            "SESSION_CONFIG": "/etc/doubao/session.json",
            "AUTH_TOKEN": "env-token",
            "HTTP_CLIENT_TIMEOUT_S": "45",
            "SHUTDOWN_TIMEOUT_SEC": "3",
            "DEBUG": "false",
        }
        with patch.dict(os.environ, env):
            config = get_config(self.path)

        self.assertEqual((config["host"], config["port"]), ("127.0.0.1", 9100))
        self.assertEqual(config["session_config"], "/etc/doubao/session.json")
        self.assertEqual(config["auth_token"], "env-token")
        self.assertEqual(config["http_client_timeout"], 45)
        self.assertEqual(config["shutdown_timeout"], 3)
        self.assertFalse(config["debug"])

    def test_port_only_http_addr_keeps_host(self) -> None:
        with patch.dict(os.environ, {"HTTP_ADDR": ":7000"}):
            config = get_config(self.path)
        self.assertEqual((config["host"], config["port"]), ("0.0.0.0", 7000))

    def test_invalid_timeouts_fall_back_to_defaults(self) -> None:
        self._write({"shutdown_timeout": -1})
        with patch.dict(os.environ, {"HTTP_CLIENT_TIMEOUT_S": "soon"}):
            config = get_config(self.path)

        self.assertEqual(config["http_client_timeout"], 300)
        self.assertEqual(config["shutdown_timeout"], 10)

    def test_blank_auth_token_env_keeps_gate_disabled(self) -> None:
        with patch.dict(os.environ, {"AUTH_TOKEN": "   "}):
            self.assertEqual(get_config(self.path)["auth_token"], "")


class TestParseHttpAddr(unittest.TestCase):
    def test_forms(self) -> None:
        self.assertEqual(parse_http_addr("0.0.0.0:8080"), ("0.0.0.0", 8080))
        self.assertEqual(parse_http_addr(":8080"), ("", 8080))
        self.assertEqual(parse_http_addr("8080"), ("", 8080))
        self.assertEqual(parse_http_addr("localhost:http"), ("localhost", None))


if __name__ == "__main__":
    unittest.main()
