from typing import Any, Optional

import requests

from schemas import DesignNode

DEFAULT_BASE_URL = "https://api.figma.com/v1"


class FetchError(RuntimeError):
    """Transport failure, non-2xx status, or a node missing from the response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FigmaClient:
    """Thin wrapper over the Figma REST ``/files/{key}/nodes`` endpoint."""

    def __init__(self, token: str, base_url: str = DEFAULT_BASE_URL, timeout: Optional[float] = None,
                 session: Any = None):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_node(self, file_key: str, node_id: str) -> DesignNode:
        url = f"{self.base_url}/files/{file_key}/nodes"
        try:
            resp = self.session.get(url, params={"ids": node_id}, headers={"X-Figma-Token": self.token},
                                    timeout=self.timeout)
        except requests.RequestException as exc:
            raise FetchError(f"request to {url} failed: {exc}") from exc
        if resp.status_code < 200 or resp.status_code >= 300:
            raise FetchError(f"Figma API error {resp.status_code}: {resp.text[:200]}", status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            raise FetchError(f"Figma API returned non-JSON body: {exc}") from exc

        entry = (data.get("nodes") or {}).get(node_id) if isinstance(data, dict) else None
        document = entry.get("document") if isinstance(entry, dict) else None
        if not isinstance(document, dict):
            raise FetchError(f"node {node_id} not found in file {file_key}", status_code=resp.status_code)
        return DesignNode.from_api(document)
