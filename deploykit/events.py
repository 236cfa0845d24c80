"""
Event logging utilities for NDJSON format.
"""

import json
import time
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from .redact import redact_data
from .state import get_run_dir


def emit_event(run_id: str, event_type: str, data: Dict[str, Any]) -> None:
    """
    Emit an event to the run's logs.ndjson file.
    
    Args:
        run_id: Run ID
        event_type: Event type (e.g., "RUN_START", "STAGE_DONE", "ERROR")
        data: Event data, redacted before it is written
    """
    logs_file = get_run_dir(run_id) / "logs.ndjson"
    
    event = {
        "ts": datetime.now().isoformat(),
        "type": event_type,
        "data": redact_data(data)
    }
    
    with open(logs_file, "a") as f:
        f.write(json.dumps(event) + "\n")
        f.flush()


def _parse_lines(lines) -> Iterator[Dict[str, Any]]:
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError:
            continue  # Skip malformed lines


def read_events(run_id: str) -> List[Dict[str, Any]]:
    logs_file = get_run_dir(run_id) / "logs.ndjson"
    
    if not logs_file.exists():
        return []
    
    with open(logs_file, "r") as f:
        return list(_parse_lines(f))


def get_last_event(run_id: str) -> Optional[Dict[str, Any]]:
    events = read_events(run_id)
    return events[-1] if events else None


def tail_events(run_id: str, follow: bool = False, poll_interval: float = 0.5):
    """
    Generator that yields events as they're written.
    
    Args:
        run_id: Run ID
        follow: If True, keep watching for new events until RUN_DONE
        poll_interval: Seconds between size checks while following
        
    Yields:
        Event dictionaries
    """
    logs_file = get_run_dir(run_id) / "logs.ndjson"
    
    if not logs_file.exists():
        return
    
    with open(logs_file, "r") as f:
        for event in _parse_lines(f):
            yield event
            if event.get("type") == EventTypes.RUN_DONE:
                return
    
    if not follow:
        return
    
    last_size = logs_file.stat().st_size
    
    while True:
        try:
            current_size = logs_file.stat().st_size
            if current_size > last_size:
                with open(logs_file, "r") as f:
                    f.seek(last_size)
                    for event in _parse_lines(f):
                        yield event
                        if event.get("type") == EventTypes.RUN_DONE:
                            return
                last_size = current_size
            time.sleep(poll_interval)
        except (FileNotFoundError, KeyboardInterrupt):
            break


class EventTypes:
    RUN_START = "RUN_START"
    RUN_DONE = "RUN_DONE"
    TRIGGER_SKIPPED = "TRIGGER_SKIPPED"
    JOB_START = "JOB_START"
    JOB_DONE = "JOB_DONE"
    JOB_SKIPPED = "JOB_SKIPPED"
    STAGE_START = "STAGE_START"
    STAGE_LINE = "STAGE_LINE"
    STAGE_DONE = "STAGE_DONE"
    STAGE_UNSTABLE = "STAGE_UNSTABLE"
    DEPLOY_STATE = "DEPLOY_STATE"
    WARNING = "WARNING"
    ERROR = "ERROR"
    SMOKE_OK = "SMOKE_OK"
    SMOKE_FAIL = "SMOKE_FAIL"
