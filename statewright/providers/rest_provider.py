"""Generic REST provider: one JSON collection per resource type."""

from __future__ import annotations

import logging
from typing import Any

import requests

from ..config import ProviderConfig
from ..exceptions import PermanentProviderError, ProviderError, TransientProviderError
from . import ProviderResult, ResourceSchema
from .registry import ProviderRegistry

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class RestClient:
    """Thin wrapper around a JSON resource API."""

    def __init__(self, config: ProviderConfig):
        self._base = f"{config.base_url.rstrip('/')}/{config.api_version}"
        self._session = requests.Session()
        self._session.headers["Content-Type"] = "application/json"
        if config.token:
            self._session.headers["Authorization"] = f"Bearer {config.token}"
        self._session.verify = config.verify_ssl
        self._timeout = config.timeout

    def get(self, path: str, timeout: float | None = None) -> requests.Response:
        return self._request("GET", path, timeout=timeout)

    def post(self, path: str, json: Any = None, timeout: float | None = None) -> requests.Response:
        return self._request("POST", path, json=json, timeout=timeout)

    def put(self, path: str, json: Any = None, timeout: float | None = None) -> requests.Response:
        return self._request("PUT", path, json=json, timeout=timeout)

    def delete(self, path: str, timeout: float | None = None) -> requests.Response:
        return self._request("DELETE", path, timeout=timeout)

    def _request(self, method: str, path: str, timeout: float | None = None, **kwargs) -> requests.Response:
        url = f"{self._base}{path}"
        kwargs["timeout"] = timeout if timeout is not None else self._timeout
        logger.debug("%s %s", method, path)

        try:
            resp = self._session.request(method, url, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise TransientProviderError(f"Request failed: {exc}") from exc
        except requests.RequestException as exc:
            raise PermanentProviderError(f"Request failed: {exc}") from exc

        if resp.status_code in TRANSIENT_STATUS_CODES:
            raise TransientProviderError(
                f"HTTP {resp.status_code} on {method} {path}: {resp.text}",
                status_code=resp.status_code,
                response_body=resp.text,
            )

        if resp.status_code >= 400:
            raise PermanentProviderError(
                f"HTTP {resp.status_code} on {method} {path}: {resp.text}",
                status_code=resp.status_code,
                response_body=resp.text,
            )

        return resp


class RestProvider:
    """CRUD for one resource type mapped onto ``/{collection}[/{id}]``."""

    def __init__(self, client: RestClient, resource_type: str, collection: str, force_new: list[str] | None = None):
        self._client = client
        self._collection = "/" + collection.strip("/")
        self.schema = ResourceSchema(type=resource_type, force_new=frozenset(force_new or ()))

    def create(self, attributes: dict[str, Any], timeout: float) -> ProviderResult:
        resp = self._client.post(self._collection, json=attributes, timeout=timeout)
        return self._result(resp, fallback=attributes, require_id=True)

    def read(self, resource_id: str, attributes: dict[str, Any], timeout: float) -> dict[str, Any] | None:
        try:
            resp = self._client.get(self._item(resource_id), timeout=timeout)
        except ProviderError as e:
            if e.status_code == 404:
                return None
            raise
        data = _payload(resp)
        data.pop("id", None)
        return data

    def update(
        self,
        resource_id: str,
        before: dict[str, Any],
        after: dict[str, Any],
        timeout: float,
    ) -> ProviderResult:
        resp = self._client.put(self._item(resource_id), json=after, timeout=timeout)
        result = self._result(resp, fallback={**before, **after})
        return ProviderResult(id=result.id or resource_id, attributes=result.attributes)

    def delete(self, resource_id: str, attributes: dict[str, Any], timeout: float) -> None:
        try:
            self._client.delete(self._item(resource_id), timeout=timeout)
        except ProviderError as e:
            if e.status_code == 404:
                logger.debug("%s %s already gone", self.schema.type, resource_id)
                return
            raise

    def _item(self, resource_id: str) -> str:
        return f"{self._collection}/{resource_id}"

    def _result(self, resp: requests.Response, fallback: dict[str, Any], require_id: bool = False) -> ProviderResult:
        data = _payload(resp) or dict(fallback)
        resource_id = data.pop("id", "")
        if not resource_id and require_id:
            raise PermanentProviderError(
                f"Create of {self.schema.type} returned no id",
                status_code=resp.status_code,
                response_body=resp.text,
            )
        return ProviderResult(id=str(resource_id), attributes=data)


def _payload(resp: requests.Response) -> dict[str, Any]:
    if not resp.content:
        return {}
    try:
        body = resp.json()
    except ValueError as exc:
        raise PermanentProviderError(
            f"Provider returned non-JSON body: {resp.text[:200]}",
            status_code=resp.status_code,
            response_body=resp.text,
        ) from exc
    if isinstance(body, dict):
        data = body.get("data", body)
        return dict(data) if isinstance(data, dict) else {}
    return {}


def build_rest_registry(config: ProviderConfig) -> ProviderRegistry:
    """Register a RestProvider for every configured collection."""
    client = RestClient(config)
    registry = ProviderRegistry()
    for resource_type, collection in sorted(config.collections.items()):
        registry.register(
            resource_type,
            RestProvider(client, resource_type, collection, config.force_new.get(resource_type)),
        )
    return registry
