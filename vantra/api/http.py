"""HTTP transport for the billing backend.

One requests.Session per client, authenticated with the static x-api-key
header. No retries: a failed call is reported once and the caller decides.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from vantra.config import Settings, load_settings
from vantra.exceptions import ApiError

logger = logging.getLogger(__name__)


def _clean_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Drop None values, send booleans the way the backend parses them."""
    if not params:
        return None
    out: Dict[str, Any] = {}
    for k, v in params.items():
        if v is None:
            continue
        out[k] = ("true" if v else "false") if isinstance(v, bool) else v
    return out


def _error_message(response: requests.Response) -> str:
    message = f"Error {response.status_code}: {response.reason}"
    try:
        body = response.json()
    except ValueError:
        return message
    if isinstance(body, dict):
        return str(body.get("message") or body.get("details") or message)
    return message


class ApiClient:
    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None) -> None:
        """
        Args:
            settings: API URL/key/timeout. Loaded from the environment if omitted.
            session: injectable for tests; a fresh Session otherwise.
        """
        self.settings = settings if settings is not None else load_settings()
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Any] = None,
        raw: bool = False,
    ) -> Any:
        """Make one HTTP request.

        Args:
            method: GET, POST, PATCH, DELETE
            path: API path (e.g. /v1/clients)
            params: query parameters
            json_data: JSON body
            raw: return the body as bytes (PDF endpoints)

        Returns:
            Parsed JSON, bytes when raw/PDF, None for 204 or an empty body.
        """
        # fatal before anything goes on the wire
        self.settings.require()
        url = f"{self.settings.api_url}{path}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=_clean_params(params),
                json=json_data,
                headers={"x-api-key": self.settings.api_key},
                timeout=self.settings.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error("API request failed: %s %s (%s)", method, path, e)
            raise ApiError(f"Request failed: {e}", method=method, path=path) from e

        if not response.ok:
            message = _error_message(response)
            logger.error("API request failed: %s %s -> %s %s", method, path, response.status_code, message)
            raise ApiError(message, status_code=response.status_code, method=method, path=path)

        if response.status_code == 204 or not response.content:
            return None

        if raw or response.headers.get("Content-Type", "").startswith("application/pdf"):
            return response.content

        try:
            return response.json()
        except ValueError as e:
            logger.error("API returned non-JSON body: %s %s", method, path)
            raise ApiError("Invalid JSON in response", status_code=response.status_code,
                           method=method, path=path) from e

    def get(self, path: str, **params: Any) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, data: Any = None) -> Any:
        return self.request("POST", path, json_data=data)

    def patch(self, path: str, data: Any) -> Any:
        return self.request("PATCH", path, json_data=data)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)
