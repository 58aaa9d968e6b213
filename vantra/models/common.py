from pydantic import BaseModel, ConfigDict
from datetime import datetime, timezone
from typing import Any
import uuid

ServiceType = str  # "recurring" | "one_time"
RECURRING = "recurring"
ONE_TIME = "one_time"


def gen_id() -> str:
    return str(uuid.uuid4())


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_amount(v: Any, default: float = 0.0) -> float:
    """Numbers as the API sends them: int, float, numeric string or junk."""
    if v is None or v == "" or isinstance(v, bool):
        return default
    try:
        out = float(v)
    except (TypeError, ValueError):
        return default
    if out != out:  # NaN
        return default
    return out


class ApiRecord(BaseModel):
    # tolerate fields the backend adds without notice
    model_config = ConfigDict(extra="ignore")
