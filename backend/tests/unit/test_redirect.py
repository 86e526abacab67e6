"""
Unit tests for the HTTP -> HTTPS redirect listener.
"""
import httpx
import pytest

from tls.redirect import HTTPSRedirectApp, https_url


class TestHTTPSURL:
    """Tests for https_url()."""

    @pytest.mark.parametrize("host,port,path,query,expected", [
        ("search.example.com", 443, "/", "", "https://search.example.com/"),
        ("search.example.com:80", 443, "/search", "q=tls", "https://search.example.com/search?q=tls"),
        ("search.example.com:8080", 8443, "/a", "", "https://search.example.com:8443/a"),
        ("[2001:db8::1]:80", 443, "/", "", "https://[2001:db8::1]/"),
        ("192.0.2.7", 8443, "", "", "https://192.0.2.7:8443/"),
    ])
    def test_targets(self, host, port, path, query, expected):
        """The incoming port is dropped and 443 is implied."""
        assert https_url(host, port, path, query) == expected


class TestRedirectApp:
    """HTTPSRedirectApp over ASGI."""

    @pytest.mark.asyncio
    async def test_permanent_redirect(self):
        """Requests get a 301 to the HTTPS origin with path and query kept."""
        app = HTTPSRedirectApp(https_port=443)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://search.example.com") as client:
            resp = await client.get("/search?q=privacy", follow_redirects=False)

        assert resp.status_code == 301
        assert resp.headers["location"] == "https://search.example.com/search?q=privacy"

    @pytest.mark.asyncio
    async def test_custom_https_port(self):
        """A non-default HTTPS port appears in the target."""
        app = HTTPSRedirectApp(https_port=8443)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://search.example.com:8080") as client:
            resp = await client.get("/", follow_redirects=False)
        assert resp.headers["location"] == "https://search.example.com:8443/"

    @pytest.mark.asyncio
    async def test_missing_host(self):
        """Without a Host header there is nowhere to redirect."""
        app = HTTPSRedirectApp()
        sent = []

        async def receive():
            return {"type": "http.request", "body": b"", "more_body": False}

        async def send(message):
            sent.append(message)

        scope = {"type": "http", "method": "GET", "path": "/", "query_string": b"", "headers": []}
        await app(scope, receive, send)
        assert sent[0]["status"] == 400
