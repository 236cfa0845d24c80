"""
Run directory management.

Each pipeline run owns a directory under ``DEPLOYKIT_HOME`` holding
``run.json`` (what was run), ``logs.ndjson`` (events) and one
``<stage>.log`` per stage with the raw command output.
"""

import json
import os
from pathlib import Path
from typing import Dict, Any, List, Optional
from datetime import datetime

from .ids import is_valid_run_id


def get_home() -> Path:
    """
    Get the deploykit home directory.
    
    Returns:
        Path: deploykit home directory
    """
    home = os.environ.get("DEPLOYKIT_HOME", ".deploykit")
    return Path(home).resolve()


def get_run_dir(run_id: str) -> Path:
    """
    Get the directory for a specific run.
    
    Raises:
        ValueError: If run ID is invalid
    """
    if not is_valid_run_id(run_id):
        raise ValueError(f"Invalid run ID: {run_id}")
    
    return get_home() / run_id


def create_run_dir(run_id: str) -> Path:
    run_dir = get_run_dir(run_id)
    run_dir.mkdir(parents=True, exist_ok=True)
    return run_dir


def write_run_json(run_id: str, variant: str, trigger: Dict[str, Any]) -> None:
    """
    Write run metadata to run.json.
    
    Args:
        run_id: Run ID
        variant: Pipeline variant name ("jenkins" or "actions")
        trigger: Trigger description (event and ref)
    """
    run_dir = get_run_dir(run_id)
    data = {
        "run_id": run_id,
        "variant": variant,
        "trigger": trigger,
        "created_at": datetime.now().isoformat()
    }
    
    with open(run_dir / "run.json", "w") as f:
        json.dump(data, f, indent=2)


def read_run_json(run_id: str) -> Dict[str, Any]:
    """
    Read run metadata from run.json.
    
    Raises:
        FileNotFoundError: If run.json doesn't exist
    """
    run_file = get_run_dir(run_id) / "run.json"
    
    if not run_file.exists():
        raise FileNotFoundError(f"Run {run_id} not found")
    
    with open(run_file, "r") as f:
        return json.load(f)


def stage_log_path(run_id: str, stage: str) -> Path:
    return get_run_dir(run_id) / f"{stage}.log"


def list_runs() -> List[str]:
    """
    List all run IDs, most recent first.
    """
    home = get_home()
    
    if not home.exists():
        return []
    
    runs = []
    for item in home.iterdir():
        if item.is_dir() and is_valid_run_id(item.name):
            runs.append(item.name)
    
    return sorted(runs, reverse=True)


def run_exists(run_id: str) -> bool:
    try:
        run_dir = get_run_dir(run_id)
    except ValueError:
        return False
    return run_dir.exists() and (run_dir / "run.json").exists()


def latest_run() -> Optional[str]:
    runs = list_runs()
    return runs[0] if runs else None
