# tests/fakes.py

import json


class FakeClock:
    """Monotonic clock in seconds that only moves when sleep() is called."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text or (json.dumps(payload) if payload is not None else "")

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self):
        if self._payload is None:
            raise ValueError("no json body")
        return self._payload


class FakeSession:
    """
    Stand-in for requests.Session. Responses are handed out in order; once a
    queue is down to its last entry that entry keeps being returned.
    """

    def __init__(self, posts=None, gets=None):
        self._posts = list(posts or [])
        self._gets = list(gets or [])
        self.post_calls: list[dict] = []
        self.get_calls: list[dict] = []

    @staticmethod
    def _next(queue):
        if not queue:
            raise AssertionError("unexpected request")
        item = queue[0] if len(queue) == 1 else queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url, headers=None, data=None, timeout=None):
        body = json.loads(data.decode("utf-8")) if data else None
        self.post_calls.append({"url": url, "headers": headers, "json": body, "timeout": timeout})
        return self._next(self._posts)

    def get(self, url, headers=None, timeout=None):
        self.get_calls.append({"url": url, "headers": headers, "timeout": timeout})
        return self._next(self._gets)


def task_created(task_id: str = "task-1") -> FakeResponse:
    return FakeResponse(200, {"data": {"task_id": task_id, "status": "CREATED"}})


def task_status(status: str, generated=None) -> FakeResponse:
    data = {"task_id": "task-1", "status": status}
    if generated is not None:
        data["generated"] = generated
    return FakeResponse(200, {"data": data})
