import json as jsonlib

import pytest


class SettingsStub:
    openai_api_key = "sk-test"
    anthropic_api_key = "ak-test"
    anthropic_version = "2023-06-01"
    google_api_key = "gk-test"
    kimi_api_key = "kimi-test"
    glm_api_key = None
    http_timeout = 1.0
    stream_emulation_delay = 0
    google_refresh_models = False
    default_provider = "openai"


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, lines=None, text=None):
        self.status_code = status_code
        self._json = json_data
        self._lines = list(lines or [])
        self._text = text
        self.lines_served = 0

    @property
    def text(self):
        if self._text is not None:
            return self._text
        return jsonlib.dumps(self._json)

    def json(self):
        if self._json is None:
            raise ValueError("no json body")
        return self._json

    def read(self):
        return self.text.encode("utf-8")

    def iter_lines(self):
        for line in self._lines:
            self.lines_served += 1
            yield line


class FakeHttp:
    """替换 httpx.Client，按顺序返回预置的响应并记录请求。"""

    def __init__(self):
        self.queue = []
        self.calls = []
        self.timeouts = []
        self.streams_opened = 0
        self.streams_closed = 0

    def add(self, item):
        self.queue.append(item)
        return item

    def _next(self):
        item = self.queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def client_class(self):
        http = self

        class StreamContext:
            def __init__(self, response):
                self._response = response

            def __enter__(self):
                http.streams_opened += 1
                return self._response

            def __exit__(self, *args):
                http.streams_closed += 1
                return False

        class Client:
            def __init__(self, *a, timeout=None, **kw):
                http.timeouts.append(timeout)

            def __enter__(self):
                return self

            def __exit__(self, *a):
                return False

            def request(self, method, url, headers=None, json=None, params=None):
                http.calls.append({"method": method, "url": url, "headers": headers, "json": json, "params": params})
                return http._next()

            def stream(self, method, url, json=None, headers=None):
                http.calls.append({"method": method, "url": url, "headers": headers, "json": json})
                return StreamContext(http._next())

        return Client


@pytest.fixture
def settings_stub():
    return SettingsStub()


@pytest.fixture
def fake_http(monkeypatch):
    http = FakeHttp()
    monkeypatch.setattr("httpx.Client", http.client_class())
    return http


def sse(*events):
    """把事件 dict 编码为 SSE 的 data 行。"""

    lines = []
    for event in events:
        if isinstance(event, str):
            lines.append(f"data: {event}")
        else:
            lines.append(f"data: {jsonlib.dumps(event)}")
        lines.append("")
    return lines
