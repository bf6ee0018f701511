from __future__ import annotations

from types import SimpleNamespace

import pytest
import requests

from pokt_migration.errors import NodeUnavailableError
from pokt_migration.rpc import NodeStatusClient

STATUS_PAYLOAD = {
    "jsonrpc": "2.0",
    "result": {
        "node_info": {"network": "pocket-beta", "moniker": "grove-1"},
        "sync_info": {"latest_block_height": "91234", "catching_up": False},
    },
}


def _response(status_code: int = 200, payload=None, *, invalid_json: bool = False):
    def _json():
        if invalid_json:
            raise ValueError("no json")
        return payload

    return SimpleNamespace(status_code=status_code, json=_json)


def test_get_status_parses_cometbft_payload(monkeypatch) -> None:
    client = NodeStatusClient("https://rpc.example/", timeout=3.0)
    seen = {}

    def fake_get(url, timeout):
        seen["url"] = url
        seen["timeout"] = timeout
        return _response(payload=STATUS_PAYLOAD)

    monkeypatch.setattr(client._session, "get", fake_get)

    status = client.get_status()

    assert seen == {"url": "https://rpc.example/status", "timeout": 3.0}
    assert status.network == "pocket-beta"
    assert status.latest_block_height == 91234
    assert status.catching_up is False
    assert status.to_dict()["moniker"] == "grove-1"


@pytest.mark.parametrize(
    "response",
    [
        _response(503, {"error": "busy"}),
        _response(200, invalid_json=True),
        _response(200, ["not", "a", "dict"]),
        _response(200, {"result": {"sync_info": {"latest_block_height": "tall"}}}),
        _response(200, {"result": None}),
        _response(200, {"result": {"node_info": "pocket", "sync_info": {}}}),
    ],
)
def test_bad_responses_raise_node_unavailable(monkeypatch, response) -> None:
    client = NodeStatusClient("https://rpc.example")
    monkeypatch.setattr(client._session, "get", lambda url, timeout: response)

    with pytest.raises(NodeUnavailableError):
        client.get_status()


def test_connection_errors_raise_node_unavailable(monkeypatch) -> None:
    client = NodeStatusClient("https://rpc.example")

    def refuse(url, timeout):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(client._session, "get", refuse)

    with pytest.raises(NodeUnavailableError, match="unreachable"):
        client.get_status()


def test_retry_adapter_is_mounted() -> None:
    client = NodeStatusClient("https://rpc.example", retries=4)
    adapter = client._session.get_adapter("https://rpc.example/status")
    assert adapter.max_retries.total == 4
    assert 503 in adapter.max_retries.status_forcelist
