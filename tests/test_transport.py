from __future__ import annotations

import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Iterator

import pytest

from couchstrap.exceptions import TransportError
from couchstrap.transport import CouchRequest, urllib_transport


class _CouchHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802 - http.server naming
        body = b'{"couchdb":"Welcome"}'
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_PUT(self) -> None:  # noqa: N802 - http.server naming
        length = int(self.headers.get("Content-Length", "0"))
        self.rfile.read(length)
        body = b'{"error":"file_exists","reason":"The database could not be created, the file already exists."}'
        self.send_response(412)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:
        return None


@pytest.fixture
def server_url() -> Iterator[str]:
    server = ThreadingHTTPServer(("127.0.0.1", 0), _CouchHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_urllib_transport_returns_success_response(server_url: str) -> None:
    response = await urllib_transport(CouchRequest(method="GET", url=server_url + "/", timeout=5.0))
    assert response.status == 200
    assert response.headers["content-type"] == "application/json"
    assert response.json() == {"couchdb": "Welcome"}


@pytest.mark.asyncio
async def test_urllib_transport_returns_error_statuses(server_url: str) -> None:
    request = CouchRequest(method="PUT", url=server_url + "/app", body=b"", timeout=5.0)
    response = await urllib_transport(request)
    assert response.status == 412
    assert response.json()["error"] == "file_exists"


@pytest.mark.asyncio
async def test_urllib_transport_raises_on_refused_connection() -> None:
    url = f"http://127.0.0.1:{_unused_port()}/"
    with pytest.raises(TransportError) as excinfo:
        await urllib_transport(CouchRequest(method="GET", url=url, timeout=2.0))
    assert excinfo.value.url == url
