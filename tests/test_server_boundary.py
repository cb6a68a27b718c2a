from __future__ import annotations

import asyncio
import errno
import json
import sys
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
from aiohttp.test_utils import AioHTTPTestCase

from vibe.engine.config import ServiceConfig
from vibe.shared.services.store import SettingsStore
from vibe.transport.server import BackendServer


async def _read_frame(resp, timeout: float = 5.0) -> tuple[str | None, str]:
    """Read one SSE frame; returns (event name or None for comments, data)."""
    event: str | None = None
    data_lines: list[str] = []
    while True:
        raw = await asyncio.wait_for(resp.content.readline(), timeout=timeout)
        if not raw:
            raise AssertionError("event stream closed")
        line = raw.decode("utf-8").rstrip("\n")
        if line == "":
            if event is not None or data_lines:
                return event, "\n".join(data_lines)
            continue
        if line.startswith(":"):
            return None, line[1:].strip()
        if line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:"):].strip())


class TestBackendServer(AioHTTPTestCase):
    async def get_application(self):
        self.tmpdir = tempfile.mkdtemp()
        self.root = Path(self.tmpdir)
        (self.root / "work").mkdir()
        self.config = ServiceConfig(
            default_cwd=str(self.root / "work"),
            shell="/bin/sh",
            terminate_grace_seconds=0.5,
            sse_keepalive_seconds=0.2,
            state_dir=str(self.root / "state"),
        )
        self.backend = BackendServer(self.config)
        return self.backend.app

    async def invoke(self, command: str, args) -> tuple[int, dict]:
        resp = await self.client.post(f"/invoke/{command}", json={"args": args})
        return resp.status, await resp.json()

    async def test_health_reports_counts(self):
        resp = await self.client.get("/health")
        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "ok"
        assert data["sessions"] == 0
        assert data["watchers"] == 0
        assert data["terminals"] == []

    async def test_commands_endpoint_lists_every_command(self):
        resp = await self.client.get("/commands")
        data = await resp.json()
        names = {c["name"] for c in data["commands"]}
        assert "terminal-create" in names
        assert "store-delete" in names
        assert len(names) == 17

    async def test_unknown_command_is_404(self):
        status, body = await self.invoke("terminal-explode", [])
        assert status == 404
        assert body["kind"] == "UnknownCommandError"

    async def test_invalid_arguments_are_400(self):
        status, body = await self.invoke("terminal-resize", ["t1", 0, 24])
        assert status == 400
        assert body["kind"] == "InvalidArgumentsError"

    async def test_malformed_body_is_400(self):
        resp = await self.client.post("/invoke/file-read", data=b"{nope", headers={"Content-Type": "application/json"})
        assert resp.status == 400
        assert (await resp.json())["kind"] == "InvalidArgumentsError"

    async def test_file_round_trip_and_listing(self):
        target = self.root / "files" / "nested" / "hello.txt"

        status, body = await self.invoke("file-write", [str(target), "hi there"])
        assert (status, body) == (200, {"result": None})

        status, body = await self.invoke("file-read", {"path": str(target)})
        assert body == {"result": "hi there"}

        status, body = await self.invoke("file-list-directory", [str(self.root / "files")])
        assert status == 200
        [entry] = body["result"]
        assert entry["name"] == "nested"
        assert entry["isDirectory"] is True
        assert entry["size"] is None

        status, body = await self.invoke("file-exists", [str(target)])
        assert body["result"] is True

    async def test_file_failure_is_422_with_path(self):
        missing = str(self.root / "missing.txt")
        status, body = await self.invoke("file-read", [missing])
        assert status == 422
        assert body["kind"] == "FileSystemError"
        assert missing in body["error"]

    async def test_copy_and_move_create_destination_parents(self):
        src = self.root / "src.txt"
        src.write_text("data")

        status, _ = await self.invoke("file-copy", [str(src), str(self.root / "a" / "b" / "copy.txt")])
        assert status == 200
        status, _ = await self.invoke("file-move", [str(src), str(self.root / "c" / "moved.txt")])
        assert status == 200

        assert (self.root / "a" / "b" / "copy.txt").read_text() == "data"
        assert (self.root / "c" / "moved.txt").read_text() == "data"
        assert not src.exists()

    async def test_store_commands(self):
        assert (await self.invoke("store-get", ["theme"]))[1] == {"result": None}
        assert (await self.invoke("store-set", ["theme", {"name": "dark"}]))[0] == 200
        assert (await self.invoke("store-get", ["theme"]))[1] == {"result": {"name": "dark"}}
        assert (await self.invoke("store-delete", ["theme"]))[0] == 200
        assert (await self.invoke("store-get", ["theme"]))[1] == {"result": None}
        assert json.loads(Path(self.config.store_path).read_text()) == {}

    async def test_store_disk_failure_is_422_with_path(self):
        failure = OSError(errno.ENOSPC, "No space left on device")
        with patch("vibe.shared.services.store.atomic_write_text", side_effect=failure):
            status, body = await self.invoke("store-set", ["theme", "dark"])
        assert status == 422
        assert body["kind"] == "FileSystemError"
        assert self.config.store_path in body["error"]
        assert "No space left on device" in body["error"]
        assert (await self.invoke("store-get", ["theme"]))[1] == {"result": None}

        assert (await self.invoke("store-set", ["theme", "dark"]))[0] == 200
        with patch("vibe.shared.services.store.atomic_write_text", side_effect=failure):
            status, body = await self.invoke("store-delete", ["theme"])
        assert (status, body["kind"]) == (422, "FileSystemError")
        assert (await self.invoke("store-get", ["theme"]))[1] == {"result": "dark"}

    async def test_watch_missing_directory_is_422(self):
        status, body = await self.invoke("file-watch-directory", [str(self.root / "nope")])
        assert status == 422
        assert body["kind"] == "WatchError"

    async def test_stop_unknown_watcher_is_ok(self):
        status, body = await self.invoke("file-stop-watching", ["not-a-watcher"])
        assert (status, body) == (200, {"result": None})

    async def test_event_stream_sends_connected_then_keepalive(self):
        resp = await self.client.get("/events")
        try:
            event, data = await _read_frame(resp)
            assert event == "connected"
            assert "terminal:data" in json.loads(data)["kinds"]

            event, data = await _read_frame(resp)
            assert event is None
            assert data == "keepalive"
        finally:
            resp.close()

    async def test_event_stream_rejects_unknown_kind(self):
        resp = await self.client.get("/events?kinds=bogus")
        assert resp.status == 400

    async def test_unknown_terminal_ids_return_false(self):
        assert (await self.invoke("terminal-write", ["ghost", "ls\n"]))[1] == {"result": False}
        assert (await self.invoke("terminal-resize", ["ghost", 80, 24]))[1] == {"result": False}
        assert (await self.invoke("terminal-destroy", ["ghost"]))[1] == {"result": False}

    @pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh")
    async def test_terminal_output_and_exit_are_streamed(self):
        resp = await self.client.get("/events?kinds=terminal:data,terminal:exit")
        try:
            event, _ = await _read_frame(resp)
            assert event == "connected"

            status, body = await self.invoke("terminal-create", ["t1"])
            assert body == {"result": {"success": True}}
            status, body = await self.invoke("terminal-write", ["t1", "echo streamed-out; exit 4\n"])
            assert body == {"result": True}

            output = ""
            exit_payload = None
            while exit_payload is None:
                event, data = await _read_frame(resp)
                if event == "terminal:data":
                    payload = json.loads(data)
                    assert payload["id"] == "t1"
                    output += payload["data"]
                elif event == "terminal:exit":
                    exit_payload = json.loads(data)

            assert "streamed-out" in output
            assert exit_payload == {"id": "t1", "exitCode": 4}
            assert (await self.invoke("terminal-destroy", ["t1"]))[1] == {"result": False}
        finally:
            resp.close()

    @pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh")
    async def test_duplicate_terminal_create_fails(self):
        assert (await self.invoke("terminal-create", ["dup"]))[1] == {"result": {"success": True}}
        status, body = await self.invoke("terminal-create", ["dup"])
        assert status == 200
        assert body["result"]["success"] is False
        assert "already exists" in body["result"]["error"]
        assert (await self.invoke("terminal-destroy", ["dup"]))[1] == {"result": True}

    async def test_watch_events_are_streamed_with_watcher_id(self):
        watched = self.root / "watched"
        watched.mkdir()
        resp = await self.client.get("/events?kinds=watch:event")
        try:
            event, _ = await _read_frame(resp)
            assert event == "connected"

            status, body = await self.invoke("file-watch-directory", [str(watched)])
            assert status == 200
            watcher_id = body["result"]

            (watched / "new.txt").write_text("x")
            while True:
                event, data = await _read_frame(resp)
                if event != "watch:event":
                    continue
                payload = json.loads(data)
                if payload["eventType"] == "add":
                    break

            assert payload["watcherId"] == watcher_id
            assert payload["path"] == str(watched / "new.txt")
            assert (await self.invoke("file-stop-watching", [watcher_id]))[0] == 200
            assert len(self.backend.watches) == 0
        finally:
            resp.close()


def test_injected_empty_store_is_used(tmp_path: Path) -> None:
    mine = SettingsStore(tmp_path / "mine.json")
    assert len(mine) == 0

    server = BackendServer(ServiceConfig(state_dir=str(tmp_path / "state")), store=mine)

    assert server.store is mine


class TestInjectedStore(AioHTTPTestCase):
    async def get_application(self):
        self.root = Path(tempfile.mkdtemp())
        self.mine = SettingsStore(self.root / "mine.json")
        config = ServiceConfig(default_cwd=str(self.root), state_dir=str(self.root / "state"))
        self.backend = BackendServer(config, store=self.mine)
        return self.backend.app

    async def test_commands_write_through_the_injected_store(self):
        resp = await self.client.post("/invoke/store-set", json={"args": ["font", 14]})
        assert resp.status == 200

        assert self.mine.get("font") == 14
        assert json.loads((self.root / "mine.json").read_text()) == {"font": 14}
        assert not (self.root / "state" / "store.json").exists()


class _Runner:
    def __init__(self, addresses) -> None:
        self.addresses = addresses


@pytest.mark.parametrize("addresses, expected", [
    ([("127.0.0.1", 51234)], 51234),
    ([("::1", 40000, 0, 0)], 40000),
    (["/tmp/backend.sock", ("0.0.0.0", 8080)], 8080),
    ([], None),
])
def test_bound_port_reads_runner_addresses(addresses, expected) -> None:
    assert BackendServer._bound_port(_Runner(addresses)) == expected
