"""
Freepik AI API client.

Images come back synchronously. Video and sound effects are job-style: a POST
creates a task, GET {path}/{task_id} reports its status, and the poller in
task_poller drives the wait.
"""
import json
import time
import logging
from dataclasses import dataclass
from typing import Callable

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

import studio_config
from task_poller import AsyncTaskPoller, PollOutcome, PollPolicy, StatusReport, default_classify
from utils.key_manager import freepik_keys, mask_key

logger = logging.getLogger("FreepikClient")

IMAGE_SIZES = ("square_1_1", "portrait_2_3", "landscape_16_9", "tall_9_16")


class FreepikError(Exception):
    """Non-2xx answer from Freepik"""

    def __init__(self, status_code: int, message: str, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class FreepikConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class MediaTaskType:
    """One job-style Freepik endpoint and how long to wait for it."""

    kind: str
    path: str
    result_field: str
    build_payload: Callable[[str], dict]
    policy: PollPolicy


def _video_payload(prompt: str) -> dict:
    return {"prompt": prompt, "duration": 6, "prompt_optimizer": True}


def _sound_payload(prompt: str) -> dict:
    # the sound-effects endpoint takes "text", not "prompt"
    return {"text": prompt, "duration_seconds": 5, "loop": False, "prompt_influence": 0.3}


VIDEO_TASK = MediaTaskType(
    kind="video",
    path="/ai/image-to-video/minimax-hailuo-02-768p",
    result_field="video_url",
    build_payload=_video_payload,
    policy=PollPolicy(
        max_wait_ms=studio_config.VIDEO_MAX_WAIT_MS,
        poll_interval_ms=studio_config.VIDEO_POLL_INTERVAL_MS,
    ),
)

SOUND_TASK = MediaTaskType(
    kind="sound",
    path="/ai/sound-effects",
    result_field="audio_url",
    build_payload=_sound_payload,
    policy=PollPolicy(
        max_wait_ms=studio_config.SOUND_MAX_WAIT_MS,
        poll_interval_ms=studio_config.SOUND_POLL_INTERVAL_MS,
    ),
)


def get_requests_session():
    """
    Returns a requests Session with retry logic.
    Max 3 retries for connection errors/status codes 500/502/503/504.
    """
    s = requests.Session()
    retry_strategy = Retry(
        total=3,
        backoff_factor=0.5,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["HEAD", "GET", "OPTIONS"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    s.mount("https://", adapter)
    s.mount("http://", adapter)
    return s


def _json_or_text(r):
    try:
        return r.json()
    except ValueError:
        return {"message": (r.text or "")[:500]}


def parse_task_status(payload) -> StatusReport:
    """{"data": {"status": ..., "generated": [url, ...]}} -> StatusReport"""
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        return StatusReport(status=None)
    generated = data.get("generated")
    result = None
    if isinstance(generated, list) and generated:
        first = generated[0]
        if isinstance(first, str):
            result = first
        elif isinstance(first, dict):
            result = first.get("url")
    return StatusReport(status=data.get("status"), result=result)


def find_base64_images(payload) -> list[str]:
    """Base64 strings from data[].base64, else anywhere in the payload."""
    data = payload.get("data") if isinstance(payload, dict) else None
    if isinstance(data, list):
        return [
            item.get("base64")
            for item in data
            if isinstance(item, dict) and isinstance(item.get("base64"), str) and item.get("base64")
        ]

    found = []

    def walk(obj):
        if isinstance(obj, dict):
            b64 = obj.get("base64")
            if isinstance(b64, str) and b64:
                found.append(b64)
            for v in obj.values():
                if isinstance(v, (dict, list)):
                    walk(v)
        elif isinstance(obj, list):
            for v in obj:
                walk(v)

    walk(payload)
    return found


class FreepikClient:
    def __init__(
        self,
        api_key: str,
        key_id: str | None = None,
        base_url: str | None = None,
        session=None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        if not api_key:
            raise FreepikConfigError("missing_freepik_config")
        self.api_key = api_key
        self.key_id = key_id
        self.base_url = (base_url or studio_config.FREEPIK_API_BASE).rstrip("/")
        self.session = session or get_requests_session()
        self._clock = clock
        self._sleep = sleep

    def _headers(self, json_body: bool = False) -> dict:
        headers = {"x-freepik-api-key": self.api_key}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _post(self, path: str, body: dict, timeout: int):
        started_at = time.time()
        r = self.session.post(
            f"{self.base_url}{path}",
            headers=self._headers(json_body=True),
            data=json.dumps(body, ensure_ascii=False).encode("utf-8"),
            timeout=timeout,
        )
        logger.info(
            "REMOTE freepik POST %s status=%s ms=%s key=%s",
            path,
            r.status_code,
            int((time.time() - started_at) * 1000),
            mask_key(self.api_key),
        )
        return r

    def generate_images(
        self,
        prompt: str,
        num_images: int = 1,
        size: str = "square_1_1",
        guidance_scale: float = 1.0,
        filter_nsfw: bool = True,
    ) -> tuple[dict, list[str]]:
        body = {
            "prompt": prompt,
            "num_images": num_images,
            "image": {"size": size},
            "guidance_scale": guidance_scale,
            "filter_nsfw": filter_nsfw,
        }
        r = self._post("/ai/text-to-image", body, timeout=120)
        payload = _json_or_text(r)
        if not r.ok:
            message = payload.get("message") if isinstance(payload, dict) else None
            raise FreepikError(r.status_code, message or f"HTTP {r.status_code}", payload)
        return payload, find_base64_images(payload)

    def create_task(self, task_type: MediaTaskType, prompt: str) -> str:
        r = self._post(task_type.path, task_type.build_payload(prompt), timeout=30)
        payload = _json_or_text(r)
        if not r.ok:
            raise FreepikError(r.status_code, f"{task_type.kind} task creation failed", payload)
        data = payload.get("data") if isinstance(payload, dict) else None
        task_id = data.get("task_id") if isinstance(data, dict) else None
        if not task_id:
            raise FreepikError(502, f"{task_type.kind} task creation returned no task_id", payload)
        logger.info("REMOTE freepik %s task created task_id=%s", task_type.kind, task_id)
        return str(task_id)

    def fetch_task(self, task_type: MediaTaskType, task_id: str) -> dict:
        """Raw status payload; raises FreepikError on non-2xx."""
        r = self.session.get(
            f"{self.base_url}{task_type.path}/{task_id}",
            headers=self._headers(),
            timeout=15,
        )
        if not r.ok:
            logger.info("REMOTE freepik %s status check failed task_id=%s status=%s", task_type.kind, task_id, r.status_code)
            raise FreepikError(r.status_code, "status_check_failed", _json_or_text(r))
        return r.json()

    def check_status(self, task_type: MediaTaskType, task_id: str) -> StatusReport:
        return parse_task_status(self.fetch_task(task_type, task_id))

    def wait_for_task(
        self,
        task_type: MediaTaskType,
        task_id: str,
        policy: PollPolicy | None = None,
    ) -> PollOutcome:
        poller = AsyncTaskPoller(
            task_id,
            lambda tid: self.check_status(task_type, tid),
            policy or task_type.policy,
            classify=default_classify,
            clock=self._clock,
            sleep=self._sleep,
        )
        return poller.run()

    def run_task(
        self,
        task_type: MediaTaskType,
        prompt: str,
        policy: PollPolicy | None = None,
    ) -> PollOutcome:
        """Create a task and wait for it. Creation errors propagate as FreepikError."""
        task_id = self.create_task(task_type, prompt)
        return self.wait_for_task(task_type, task_id, policy=policy)


def get_freepik_client(key_id: str | None = None) -> FreepikClient:
    """
    Client bound to one API key: a random one for new tasks, or the key
    identified by key_id for checking an existing task.
    """
    if key_id:
        key = freepik_keys.get_key_by_id(key_id)
        if not key:
            raise FreepikConfigError(f"unknown key_id {key_id}")
        return FreepikClient(key, key_id=key_id)
    key, new_key_id = freepik_keys.get_random_key()
    if not key:
        raise FreepikConfigError("missing_freepik_config")
    return FreepikClient(key, key_id=new_key_id)
