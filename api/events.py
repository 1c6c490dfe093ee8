import json
import os
from datetime import datetime, timezone

from api import config


def _log_event(event_type: str, payload: dict) -> None:
    path = config.EVENT_LOG_PATH
    try:
        dir_path = os.path.dirname(path)
        if dir_path:
            os.makedirs(dir_path, exist_ok=True)
        record = {
            "event_type": event_type,
            "ts": datetime.now(timezone.utc).isoformat(),
            **(payload or {}),
        }
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=True) + "\n")
    except OSError:
        # 로그 파일 실패로 요청을 깨뜨리지 않는다
        pass


def log_api_event(event_type: str, payload: dict) -> None:
    _log_event(event_type, payload)


def log_search_event(event_type: str, payload: dict) -> None:
    _log_event(event_type, payload)


def reset_event_log(reason: str) -> None:
    path = config.EVENT_LOG_PATH
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError:
        return
    _log_event("event_log_reset", {"reason": reason})
