"""HTTP request step executor built on ``requests``."""

from typing import Any, Dict, Optional

import requests
from requests.auth import HTTPBasicAuth

from ..core.exceptions import ExecutionError
from ..core.logging import get_logger
from .base import StepExecutor

logger = get_logger(__name__)

ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")
DEFAULT_TIMEOUT = 30.0


class HttpRequestExecutor(StepExecutor):
    """Performs one HTTP call and outputs status, headers and decoded body.

    Parameters: ``url`` (required), ``method``, ``headers``, ``body``,
    ``query``, ``authentication`` (``{"type": "none" | "bearer" | "basic" |
    "api-key", ...}``), ``response_type`` (``json`` or ``text``),
    ``timeout`` in seconds and ``fail_on_status``. Transport errors, and
    statuses >= 400 when ``fail_on_status`` is true, raise
    :class:`ExecutionError` so the engine retries the step.
    """

    type = "http-request"
    category = "action"
    required_parameters = ("url",)
    description = "Calls an HTTP endpoint"

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def validate_parameters(self, parameters):
        errors = []
        url = parameters.get("url")
        if not isinstance(url, str) or not url.strip():
            errors.append("URL is required")
        method = str(parameters.get("method", "GET")).upper()
        if method not in ALLOWED_METHODS:
            errors.append(f"Unsupported HTTP method '{method}'")
        return errors

    def execute(self, node_id, parameters, context, env):
        url = parameters.get("url")
        if not url:
            raise ExecutionError("URL is required", node_id=node_id)
        method = str(parameters.get("method", "GET")).upper()
        headers = self._build_headers(parameters)
        body = parameters.get("body")
        timeout = float(parameters.get("timeout") or DEFAULT_TIMEOUT)

        logger.debug(f"Node {node_id}: {method} {url}")
        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                params=parameters.get("query") or None,
                json=body if body is not None and not isinstance(body, str) else None,
                data=body if isinstance(body, str) else None,
                auth=self._basic_auth(parameters.get("authentication")),
                timeout=timeout
            )
        except requests.Timeout:
            raise ExecutionError(f"Request timeout after {timeout} seconds", node_id=node_id)
        except requests.RequestException as e:
            raise ExecutionError(f"Request to {url} failed: {str(e)}", node_id=node_id)

        if parameters.get("fail_on_status") and response.status_code >= 400:
            raise ExecutionError(
                f"{method} {url} returned {response.status_code} {response.reason}",
                node_id=node_id
            )

        return {
            "status": response.status_code,
            "status_text": response.reason,
            "headers": dict(response.headers),
            "data": self._decode(response, parameters.get("response_type", "json")),
            "ok": response.ok,
        }

    @staticmethod
    def _build_headers(parameters: Dict[str, Any]) -> Dict[str, str]:
        headers = {str(k): str(v) for k, v in (parameters.get("headers") or {}).items()}
        auth = parameters.get("authentication") or {}
        auth_type = auth.get("type", "none")
        if auth_type == "bearer" and auth.get("token"):
            headers["Authorization"] = f"Bearer {auth['token']}"
        elif auth_type == "api-key" and auth.get("header_name") and auth.get("header_value"):
            headers[auth["header_name"]] = str(auth["header_value"])
        return headers

    @staticmethod
    def _basic_auth(auth: Optional[Dict[str, Any]]):
        if auth and auth.get("type") == "basic" and auth.get("username") and auth.get("password"):
            return HTTPBasicAuth(auth["username"], auth["password"])
        return None

    @staticmethod
    def _decode(response: requests.Response, response_type: str) -> Any:
        content_type = response.headers.get("content-type", "")
        if response_type == "json" or "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text
