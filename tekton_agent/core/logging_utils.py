import json
import datetime
import os
import sys

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "WARNING": 30, "ERROR": 40}


def _enabled(level: str) -> bool:
    threshold = os.getenv("TEKTON_AGENT_LOG_LEVEL", "DEBUG").upper()
    return _LEVELS.get(level, 20) >= _LEVELS.get(threshold, 10)


def log_json(level: str, event: str, task: str = None, details: dict = None):
    """
    Emits a single-line JSON log to stderr by default.
    Automatically masks sensitive info in details.

    Args:
        level (str): Log level (e.g., "INFO", "WARN", "ERROR").
        event (str): Short snake_case name of the event.
        task (str, optional): Id of the task being processed. Defaults to None.
        details (dict, optional): A dictionary for additional information. Defaults to None.
    """
    level = level.upper()
    if not _enabled(level):
        return

    from tekton_agent.core.redaction import mask_secrets
    safe_details = mask_secrets(details) if details else None

    log_entry = {
        "ts": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    if task:
        log_entry["task"] = task
    if safe_details:
        log_entry["details"] = safe_details

    stream_name = os.getenv("TEKTON_AGENT_LOG_STREAM", "stderr").lower()
    stream = sys.stdout if stream_name == "stdout" else sys.stderr
    stream.write(json.dumps(log_entry, default=str) + "\n")
    stream.flush()
