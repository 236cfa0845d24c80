"""
Run status derivation from recorded events.
"""

from typing import Any, Dict, List, Optional

from .events import EventTypes


def derive_status(run_id: str, events: List[Dict[str, Any]],
                  meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Summarise a run from its events.

    A run without RUN_DONE is still "running". Stage statuses come from the
    latest STAGE_DONE per stage, skipped jobs mark their stages "skipped".
    ``meta`` is the run's run.json; it supplies variant, trigger and start
    time when the events do not (a run killed before RUN_START).

    Returns:
        Dict with run_id, variant, trigger, created_at, outcome, stages, jobs,
        last_state, warnings and errors
    """
    meta = meta or {}
    info: Dict[str, Any] = {
        "run_id": run_id,
        "variant": meta.get("variant"),
        "trigger": meta.get("trigger"),
        "created_at": meta.get("created_at"),
        "outcome": "unknown" if not events else "running",
        "stages": {},
        "jobs": {},
        "last_state": None,
        "warnings": [],
        "errors": [],
    }

    for event in events:
        event_type = event.get("type")
        data = event.get("data", {})

        if event_type == EventTypes.RUN_START:
            info["variant"] = data.get("variant")
            info["trigger"] = data.get("trigger")
        elif event_type == EventTypes.STAGE_START:
            info["stages"][data.get("stage")] = "running"
        elif event_type == EventTypes.STAGE_DONE:
            info["stages"][data.get("stage")] = data.get("status")
        elif event_type == EventTypes.JOB_DONE:
            info["jobs"][data.get("job")] = data.get("status")
        elif event_type == EventTypes.JOB_SKIPPED:
            info["jobs"][data.get("job")] = "skipped"
        elif event_type == EventTypes.DEPLOY_STATE:
            info["last_state"] = data.get("state")
        elif event_type == EventTypes.WARNING:
            info["warnings"].append(data.get("message"))
        elif event_type == EventTypes.ERROR:
            info["errors"].append({"stage": data.get("stage"), "reason": data.get("reason")})
        elif event_type == EventTypes.TRIGGER_SKIPPED:
            info["warnings"].append(data.get("reason"))
        elif event_type == EventTypes.RUN_DONE:
            info["outcome"] = data.get("outcome")

    return info


def last_error(info: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return info["errors"][-1] if info["errors"] else None
