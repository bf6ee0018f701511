"""CometBFT RPC status check for the configured network node."""

from __future__ import annotations

from dataclasses import dataclass

from pokt_migration.errors import NodeUnavailableError


@dataclass(frozen=True)
class NodeStatus:
    network: str
    latest_block_height: int
    catching_up: bool
    moniker: str | None = None

    def to_dict(self) -> dict:
        return {
            "network": self.network,
            "latest_block_height": self.latest_block_height,
            "catching_up": self.catching_up,
            "moniker": self.moniker,
        }


@dataclass
class NodeStatusClient:
    base_url: str
    timeout: float = 10.0
    retries: int = 2

    def __post_init__(self) -> None:
        try:
            import requests
            from requests.adapters import HTTPAdapter
            from urllib3.util.retry import Retry
        except Exception as exc:  # pragma: no cover
            raise NodeUnavailableError(f"requests stack unavailable: {exc}") from exc

        self._requests = requests
        self._session = requests.Session()
        retry = Retry(
            total=max(0, int(self.retries)),
            connect=max(0, int(self.retries)),
            read=max(0, int(self.retries)),
            status=max(0, int(self.retries)),
            status_forcelist=(429, 500, 502, 503, 504),
            backoff_factor=0.2,
            allowed_methods=("GET",),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _get(self, path: str) -> dict:
        try:
            response = self._session.get(self._url(path), timeout=self.timeout)
        except self._requests.RequestException as exc:
            raise NodeUnavailableError(f"node {self.base_url} unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise NodeUnavailableError(
                f"node {self.base_url} returned HTTP {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise NodeUnavailableError(f"node {self.base_url} returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise NodeUnavailableError(f"node {self.base_url} returned an unexpected payload")
        return payload

    def get_status(self) -> NodeStatus:
        payload = self._get("/status")
        result = payload.get("result", payload)
        if not isinstance(result, dict):
            raise NodeUnavailableError(f"node {self.base_url} returned a status without a result")
        node_info = result.get("node_info") or {}
        sync_info = result.get("sync_info") or {}
        if not isinstance(node_info, dict) or not isinstance(sync_info, dict):
            raise NodeUnavailableError(f"node {self.base_url} returned a malformed status")
        try:
            height = int(sync_info.get("latest_block_height", 0))
        except (TypeError, ValueError) as exc:
            raise NodeUnavailableError("node status has an invalid block height") from exc
        return NodeStatus(
            network=str(node_info.get("network") or ""),
            latest_block_height=height,
            catching_up=bool(sync_info.get("catching_up", False)),
            moniker=node_info.get("moniker"),
        )


__all__ = ["NodeStatus", "NodeStatusClient"]
