import sys
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from app.core import rate_limit as rate_limit_module
from app.core.config import settings
from app.main import create_app
from tests._data import CDN


class _MemoryRedis:
    def __init__(self):
        self._data: dict[str, tuple[str, float | None]] = {}

    def ping(self):
        return True

    def _now(self) -> float:
        return time.time()

    def _get_entry(self, key: str):
        v = self._data.get(key)
        if not v:
            return None
        value, exp = v
        if exp is not None and exp <= self._now():
            self._data.pop(key, None)
            return None
        return value, exp

    def get(self, key: str):
        entry = self._get_entry(key)
        return entry[0] if entry else None

    def incr(self, key: str):
        cur = self.get(key)
        n = int(cur or 0) + 1
        _, exp = self._data.get(key, ("", None))
        self._data[key] = (str(n), exp)
        return n

    def expire(self, key: str, seconds: int):
        entry = self._get_entry(key)
        if not entry:
            return False
        value, _ = entry
        self._data[key] = (value, self._now() + int(seconds))
        return True

    def ttl(self, key: str):
        entry = self._get_entry(key)
        if not entry:
            return -2
        _, exp = entry
        if exp is None:
            return -1
        return max(0, int(exp - self._now()))


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _Resp:
    def __init__(self, payload=None, *, status_code: int = 200, text: str | None = None):
        self._payload = payload
        self.status_code = status_code
        self.text = text if text is not None else ("" if payload is None else str(payload))

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


class FakeShopify:
    """Stands in for httpx.Client against the Admin GraphQL API and the staged-upload host."""

    def __init__(self):
        self.files: dict[str, dict] = {}
        self.calls: list[tuple[str, dict]] = []
        self.transfers: list[dict] = []

        self.created_typename = "MediaImage"
        self.status_plan = ["PROCESSING", "READY"]
        self.ready_without_url = False
        self.transfer_status = 201
        self.transfer_body = ""
        self.staged_parameters = [
            {"name": "Content-Type", "value": "image/jpeg"},
            {"name": "x-goog-acl", "value": "private"},
            {"name": "x-goog-signature", "value": "sig"},
        ]
        self.no_staged_target = False

        self.graphql_errors: dict[str, list] = {}
        self.user_errors: dict[str, list] = {}
        self.raise_on: dict[str, Exception] = {}
        self.not_json: set[str] = set()
        self.undeletable: set[str] = set()
        self.failing_delete_batches: set[int] = set()

        self._seq = 0
        self._pending: dict[str, list[str]] = {}
        self._delete_batches = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def ops(self) -> list[str]:
        return [op for op, _ in self.calls]

    def add_file(self, alt: str, *, typename: str = "MediaImage") -> str:
        self._seq += 1
        fid = f"gid://shopify/{typename}/{self._seq}"
        self.files[fid] = {"alt": alt, "typename": typename}
        return fid

    @staticmethod
    def _operation(query: str) -> str:
        for op in ("stagedUploadsCreate", "fileCreate", "getFileStatus", "getFiles", "fileDelete"):
            if f" {op}(" in query:
                return op
        raise AssertionError(f"unexpected query: {query[:80]}")

    def post(self, url, json=None, headers=None, data=None, files=None):
        if json is None:
            return self._transfer("POST", url, headers=headers, data=data, files=files)

        op = self._operation(json["query"])
        variables = json.get("variables") or {}
        self.calls.append((op, variables))

        if op in self.raise_on:
            raise self.raise_on[op]
        if op in self.not_json:
            return _Resp(None, status_code=502, text="<html>bad gateway</html>")
        if op in self.graphql_errors:
            return _Resp({"errors": self.graphql_errors[op]})

        return _Resp({"data": getattr(self, f"_{op}")(variables)})

    def put(self, url, content=None, headers=None):
        return self._transfer("PUT", url, headers=headers, content=content)

    def _transfer(self, method, url, **kwargs):
        if "staged upload" in self.raise_on:
            raise self.raise_on["staged upload"]
        self.transfers.append({"method": method, "url": url, **kwargs})
        return _Resp(None, status_code=self.transfer_status, text=self.transfer_body)

    def _stagedUploadsCreate(self, variables):
        if "stagedUploadsCreate" in self.user_errors:
            return {"stagedUploadsCreate": {"stagedTargets": [], "userErrors": self.user_errors["stagedUploadsCreate"]}}
        if self.no_staged_target:
            return {"stagedUploadsCreate": {"stagedTargets": [], "userErrors": []}}
        filename = variables["input"][0]["filename"]
        return {
            "stagedUploadsCreate": {
                "stagedTargets": [
                    {
                        "url": f"https://storage.example.com/upload/{filename}",
                        "resourceUrl": f"https://storage.example.com/tmp/{filename}",
                        "parameters": self.staged_parameters,
                    }
                ],
                "userErrors": [],
            }
        }

    def _node(self, fid: str, status: str) -> dict:
        f = self.files[fid]
        typename = f["typename"]
        url = f"{CDN}/{f['alt']}"
        if typename == "GenericFile":
            return {"__typename": typename, "id": fid, "url": None if self.ready_without_url else url, "alt": f["alt"], "fileStatus": "READY"}
        has_url = status == "READY" and not self.ready_without_url
        if typename == "MediaImage":
            return {
                "__typename": typename,
                "id": fid,
                "status": status,
                "image": {"url": url} if has_url else None,
                "alt": f["alt"],
            }
        return {"__typename": typename, "id": fid, "status": status, "sources": [{"url": url}] if has_url else []}

    def _fileCreate(self, variables):
        if "fileCreate" in self.user_errors:
            return {"fileCreate": {"files": [], "userErrors": self.user_errors["fileCreate"]}}
        file_input = variables["files"][0]
        fid = self.add_file(file_input["alt"], typename=self.created_typename)
        self._pending[fid] = list(self.status_plan)
        return {"fileCreate": {"files": [self._node(fid, "UPLOADED")], "userErrors": []}}

    def _getFileStatus(self, variables):
        fid = variables["id"]
        if fid not in self.files:
            return {"node": None}
        plan = self._pending.get(fid) or ["READY"]
        status = plan.pop(0) if len(plan) > 1 else plan[0]
        self._pending[fid] = plan
        return {"node": self._node(fid, status)}

    def _getFiles(self, variables):
        first = int(variables["first"])
        start = int(variables.get("after") or 0)
        ids = list(self.files)
        page = ids[start : start + first]
        end = start + len(page)
        return {
            "files": {
                "edges": [{"node": {"id": fid, "alt": self.files[fid]["alt"]}, "cursor": str(i)} for i, fid in enumerate(page, start)],
                "pageInfo": {"hasNextPage": end < len(ids), "endCursor": str(end) if page else None},
            }
        }

    def _fileDelete(self, variables):
        self._delete_batches += 1
        if self._delete_batches in self.failing_delete_batches:
            return {"fileDelete": {"deletedFileIds": [], "userErrors": [{"field": ["fileIds"], "message": "throttled"}]}}
        deleted = []
        for fid in variables["fileIds"]:
            if fid in self.files and fid not in self.undeletable:
                del self.files[fid]
                deleted.append(fid)
        return {"fileDelete": {"deletedFileIds": deleted, "userErrors": []}}


@pytest.fixture(autouse=True)
def relay_settings(monkeypatch):
    monkeypatch.setattr(settings, "shopify_shop", "test-shop.myshopify.com")
    monkeypatch.setattr(settings, "shopify_admin_token", "shpat_test_token")
    monkeypatch.setattr(settings, "admin_password", "correct-horse")
    monkeypatch.setattr(settings, "rate_limit_backend", "memory")
    monkeypatch.setattr(settings, "rate_limit_max_uploads", 50)
    monkeypatch.setattr(settings, "rate_limit_window_seconds", 3600)
    monkeypatch.setattr(settings, "rate_limit_fail_open", False)
    monkeypatch.setattr(settings, "staged_upload_http_method", "PUT")
    monkeypatch.setattr(settings, "upload_poll_interval_seconds", 1.0)
    monkeypatch.setattr(settings, "upload_poll_timeout_seconds", 15.0)
    rate_limit_module.reset_limiters()
    yield settings
    rate_limit_module.reset_limiters()


@pytest.fixture()
def shopify(monkeypatch):
    fake = FakeShopify()

    import app.services.shopify as shopify_mod

    monkeypatch.setattr(shopify_mod, "_http_client", lambda timeout: fake)
    return fake


@pytest.fixture()
def clock(monkeypatch):
    c = FakeClock()

    import app.services.bulk_remover as remover_mod
    import app.services.upload_pipeline as pipeline_mod

    monkeypatch.setattr(pipeline_mod, "time", c)
    monkeypatch.setattr(remover_mod, "time", c)
    return c


@pytest.fixture()
def memory_redis(monkeypatch):
    r = _MemoryRedis()
    monkeypatch.setattr(rate_limit_module, "get_redis", lambda: r)
    return r


@pytest.fixture()
def client(shopify, clock):
    return TestClient(create_app())
