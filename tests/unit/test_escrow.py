"""
Unit tests for the escrow client, using httpx.MockTransport.
"""

import json

import httpx

from bidengine.network.escrow import EscrowClient


def _client(handler, api_key="secret"):
    return EscrowClient("http://escrow.test/", api_key=api_key, transport=httpx.MockTransport(handler))


class TestEscrowRelease:
    """Tests for EscrowClient.release."""

    def test_request_shape(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"reference": "settle:a1", "status": "RELEASED"})

        result = _client(handler).release("esc-1", 97000, 13000, "settle:a1")

        assert result.ok
        assert result.reference == "settle:a1"
        assert seen["method"] == "POST"
        assert seen["url"] == "http://escrow.test/escrows/esc-1/release"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"] == {
            "netToSellerCents": 97000,
            "feeToPlatformCents": 13000,
            "reference": "settle:a1",
        }

    def test_no_auth_header_without_key(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(204)

        result = _client(handler, api_key="").release("esc-1", 1, 1, "settle:a1")
        assert result.ok
        assert result.reference == "settle:a1"
        assert seen["auth"] is None

    def test_non_2xx_is_failure(self):
        def handler(request):
            return httpx.Response(409, json={"error": "already released"})

        result = _client(handler).release("esc-1", 1, 1, "settle:a1")
        assert not result.ok
        assert result.status == 409
        assert result.body == {"error": "already released"}

    def test_transport_error_is_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = _client(handler).release("esc-1", 1, 1, "settle:a1")
        assert not result.ok
        assert result.status is None
        assert "connection refused" in result.body

    def test_non_json_body(self):
        def handler(request):
            return httpx.Response(502, text="Bad Gateway")

        result = _client(handler).release("esc-1", 1, 1, "settle:a1")
        assert not result.ok
        assert result.to_dict()["body"] == "Bad Gateway"
