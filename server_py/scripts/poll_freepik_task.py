import sys
import os
import json
import argparse
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from freepik_client import SOUND_TASK, VIDEO_TASK, get_freepik_client
from task_poller import PollPolicy

TASK_TYPES = {"video": VIDEO_TASK, "sound": SOUND_TASK}

def poll(kind: str, task_id: str, key_id: str | None, max_wait_ms: int | None, interval_ms: int | None):
    task_type = TASK_TYPES[kind]
    policy = PollPolicy(
        max_wait_ms=max_wait_ms if max_wait_ms is not None else task_type.policy.max_wait_ms,
        poll_interval_ms=interval_ms if interval_ms is not None else task_type.policy.poll_interval_ms,
        allow_short_budget=True,
    )
    client = get_freepik_client(key_id)
    print(f"Polling {kind} task {task_id} (key_id={client.key_id}) every {policy.poll_interval_ms}ms for up to {policy.max_wait_ms}ms")
    outcome = client.wait_for_task(task_type, task_id, policy=policy)
    print(json.dumps(outcome.to_dict(), indent=2))
    return 0 if outcome.succeeded else 2

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Poll an existing Freepik task")
    parser.add_argument("task_id")
    parser.add_argument("--kind", choices=sorted(TASK_TYPES), default="video")
    parser.add_argument("--key-id", default=None)
    parser.add_argument("--max-wait-ms", type=int, default=None)
    parser.add_argument("--interval-ms", type=int, default=None)
    args = parser.parse_args()
    sys.exit(poll(args.kind, args.task_id, args.key_id, args.max_wait_ms, args.interval_ms))
