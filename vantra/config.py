from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from vantra.exceptions import ConfigurationError

# --- Base paths ---
ROOT_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT_DIR / "data"
EXPORTS_DIR = ROOT_DIR / "exports"

DEFAULT_TIMEOUT = 30.0
DEFAULT_DUE_DAYS = 10


def _load_json(path: os.PathLike | str) -> Optional[Any]:
    p = Path(path)
    if not p.exists():
        return None
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None


def _first(env: Mapping[str, str], *keys: str) -> str:
    for k in keys:
        val = (env.get(k) or "").strip()
        if val:
            return val
    return ""


@dataclass
class Settings:
    api_url: str = ""
    api_key: str = ""
    timeout: Optional[float] = DEFAULT_TIMEOUT
    data_dir: Path = DATA_DIR
    exports_dir: Path = EXPORTS_DIR
    invoice_due_days: int = DEFAULT_DUE_DAYS
    company: Dict[str, str] = field(default_factory=dict)
    wkhtmltopdf_path: str = ""

    @property
    def settings_json(self) -> Path:
        return self.data_dir / "settings.json"

    def require(self) -> None:
        if not self.api_url or not self.api_key:
            raise ConfigurationError(
                "Configuration Error: VANTRA_API_URL or VANTRA_API_KEY is missing in .env"
            )


def load_settings(env: Optional[Mapping[str, str]] = None, dotenv_path: Optional[Path] = None) -> Settings:
    """
    Build the settings from (in order):
      - a `.env` file at the repo root (python-dotenv, never overrides the real environment)
      - environment variables VANTRA_* (VITE_* accepted for older .env files)
      - data/settings.json for company details and invoice_due_days
    Missing URL/key is not an error here; the first request raises.
    """
    if env is None:
        load_dotenv(dotenv_path or ROOT_DIR / ".env")
        env = os.environ

    data_dir = Path(_first(env, "VANTRA_DATA_DIR") or DATA_DIR)
    raw_timeout = _first(env, "VANTRA_API_TIMEOUT")
    try:
        timeout: Optional[float] = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT
    except ValueError:
        timeout = DEFAULT_TIMEOUT
    if timeout is not None and timeout <= 0:
        timeout = None

    settings = Settings(
        api_url=_first(env, "VANTRA_API_URL", "VITE_API_URL").rstrip("/"),
        api_key=_first(env, "VANTRA_API_KEY", "VITE_API_KEY"),
        timeout=timeout,
        data_dir=data_dir,
        exports_dir=Path(_first(env, "VANTRA_EXPORTS_DIR") or EXPORTS_DIR),
        wkhtmltopdf_path=_first(env, "WKHTMLTOPDF", "WKHTMLTOPDF_CMD"),
    )

    s = _load_json(settings.settings_json) or {}
    if isinstance(s, dict):
        company = s.get("company")
        if isinstance(company, dict):
            settings.company = {str(k): str(v) for k, v in company.items()}
        try:
            settings.invoice_due_days = int(s.get("invoice_due_days", DEFAULT_DUE_DAYS))
        except (TypeError, ValueError):
            settings.invoice_due_days = DEFAULT_DUE_DAYS
        pdf_conf = s.get("pdf") if isinstance(s.get("pdf"), dict) else {}
        if not settings.wkhtmltopdf_path:
            settings.wkhtmltopdf_path = str(pdf_conf.get("wkhtmltopdf_path") or s.get("wkhtmltopdf_path") or "")
    return settings
