"""Unit tests for taskcal.storage.backends."""

import json
from types import SimpleNamespace

import httpx
import pytest

from taskcal.exceptions import StorageIOError
from taskcal.storage.backends import (
    JsonFileBackend,
    MemoryBackend,
    RemoteApiBackend,
    backend_from_settings,
)

pytestmark = [pytest.mark.unit]

BASE_URL = "http://store.test/api"


class TestMemoryBackend:
    async def test_uninitialized_reads_none(self):
        assert await MemoryBackend().read_all() is None

    async def test_returns_copies(self):
        backend = MemoryBackend()
        records = [{"id": "a", "tags": ["x"]}]
        await backend.write_all(records)

        records[0]["tags"].append("y")
        loaded = await backend.read_all()
        loaded[0]["id"] = "changed"

        assert await backend.read_all() == [{"id": "a", "tags": ["x"]}]
        assert backend.write_count == 1


class TestJsonFileBackend:
    async def test_missing_file_reads_none(self, tmp_path):
        assert await JsonFileBackend(tmp_path / "events.json").read_all() is None

    async def test_write_then_read(self, tmp_path):
        path = tmp_path / "nested" / "events.json"
        backend = JsonFileBackend(path)

        await backend.write_all([{"id": "a", "title": "Café"}])

        assert json.loads(path.read_text(encoding="utf-8")) == [{"id": "a", "title": "Café"}]
        assert await backend.read_all() == [{"id": "a", "title": "Café"}]
        assert [p.name for p in path.parent.iterdir()] == ["events.json"]

    async def test_overwrite_replaces_content(self, tmp_path):
        backend = JsonFileBackend(tmp_path / "events.json")
        await backend.write_all([{"id": "a"}])
        await backend.write_all([])

        assert await backend.read_all() == []

    async def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "events.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StorageIOError):
            await JsonFileBackend(path).read_all()

    async def test_non_list_root_raises(self, tmp_path):
        path = tmp_path / "events.json"
        path.write_text('{"id": "a"}', encoding="utf-8")

        with pytest.raises(StorageIOError):
            await JsonFileBackend(path).read_all()

    async def test_unwritable_location_raises(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")

        with pytest.raises(StorageIOError):
            await JsonFileBackend(blocker / "events.json").write_all([])


class FakeCrudService:
    """httpx MockTransport handler emulating the CRUD service."""

    def __init__(self, records=None, fail_status=None):
        self.records = {r["id"]: dict(r) for r in records or []}
        self.fail_status = fail_status
        self.calls: list[tuple[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if self.fail_status:
            return httpx.Response(self.fail_status, json={"message": "boom"})

        if path == "/api/events":
            if request.method == "GET":
                return httpx.Response(200, json=list(self.records.values()))
            if request.method == "POST":
                record = json.loads(request.content)
                self.records[record["id"]] = record
                return httpx.Response(201, json=record)

        event_id = path.rsplit("/", 1)[-1]
        if event_id not in self.records:
            return httpx.Response(404, json={"message": "Not found"})
        if request.method == "PUT":
            self.records[event_id].update(json.loads(request.content))
            return httpx.Response(200, json=self.records[event_id])
        if request.method == "DELETE":
            del self.records[event_id]
            return httpx.Response(204)
        return httpx.Response(200, json=self.records[event_id])


class TestRemoteApiBackend:
    async def test_read_all(self):
        service = FakeCrudService([{"id": "a"}])
        async with httpx.AsyncClient(transport=httpx.MockTransport(service)) as client:
            backend = RemoteApiBackend(BASE_URL + "/", client=client)

            assert await backend.read_all() == [{"id": "a"}]

        assert service.calls == [("GET", "/api/events")]

    async def test_write_all_creates_updates_and_deletes(self):
        service = FakeCrudService([{"id": "a", "title": "old"}, {"id": "b"}])
        async with httpx.AsyncClient(transport=httpx.MockTransport(service)) as client:
            backend = RemoteApiBackend(BASE_URL, client=client)

            await backend.write_all([{"id": "a", "title": "new"}, {"id": "c"}])

        assert service.records == {"a": {"id": "a", "title": "new"}, "c": {"id": "c"}}
        assert ("PUT", "/api/events/a") in service.calls
        assert ("POST", "/api/events") in service.calls
        assert ("DELETE", "/api/events/b") in service.calls

    async def test_error_status_raises_storage_error(self):
        service = FakeCrudService(fail_status=500)
        async with httpx.AsyncClient(transport=httpx.MockTransport(service)) as client:
            backend = RemoteApiBackend(BASE_URL, client=client)

            with pytest.raises(StorageIOError):
                await backend.read_all()
            with pytest.raises(StorageIOError):
                await backend.write_all([{"id": "a"}])

    async def test_connection_error_raises_storage_error(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
            with pytest.raises(StorageIOError):
                await RemoteApiBackend(BASE_URL, client=client).read_all()

    async def test_non_list_payload_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"events": []})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(StorageIOError):
                await RemoteApiBackend(BASE_URL, client=client).read_all()


class TestBackendSelection:
    def test_remote_when_enabled(self):
        backend = backend_from_settings(SimpleNamespace(use_remote_api=True, remote_api_url=BASE_URL, store_path="x.json"))

        assert isinstance(backend, RemoteApiBackend)

    def test_json_file_when_store_path(self, tmp_path):
        backend = backend_from_settings(SimpleNamespace(use_remote_api=False, remote_api_url=BASE_URL, store_path=str(tmp_path / "e.json")))

        assert isinstance(backend, JsonFileBackend)

    def test_memory_otherwise(self):
        assert isinstance(backend_from_settings(SimpleNamespace()), MemoryBackend)
