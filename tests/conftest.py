import datetime
import http.server
import logging
import threading
import pytest

from blobsign.config import StorageConfig


@pytest.fixture(autouse=True)
def logconf(caplog):
    caplog.set_level(logging.DEBUG)


@pytest.fixture(scope="session")
def storage_account():
    return "devstoreaccount1"


@pytest.fixture(scope="session")
def shared_key():
    return "Eby8vdM02xNOcqFlqUwJPLlmEtlCDXJ1OUzFT50uSRZ6IFsuFq2UVErCz4I6tq/K1SZFPTOtr/KBHBeksoGMGw=="


@pytest.fixture
def fixed_now():
    return datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)


@pytest.fixture
def clock(fixed_now):
    return lambda: fixed_now


@pytest.fixture
def prefs(storage_account, shared_key):
    return {
        "azure_storage_enabled": True,
        "azure_storage_account": storage_account,
        "azure_storage_key": shared_key,
        "azure_storage_container": "c",
        "azure_storage_container_calendar": "calendar",
        "azure_storage_sas_token": "seed",
        "azure_host": "https://h",
    }


@pytest.fixture
def storage_config(storage_account, shared_key):
    return StorageConfig(
        account_name=storage_account,
        account_key=shared_key,
        container_name="c",
        calendar_container_name="calendar",
        sas_token_seed="seed",
        host_url="https://h",
    )


class BlobHandler(http.server.BaseHTTPRequestHandler):
    """records PUTs and answers with server.status"""

    def do_PUT(self):
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length)
        self.server.received.append((self.path, self.headers, body))
        self.send_response(self.server.status)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, format, *args):
        logging.getLogger("blobserver").debug(format, *args)


@pytest.fixture
def blob_server():
    server = http.server.ThreadingHTTPServer(("127.0.0.1", 0), BlobHandler)
    server.received = []
    server.status = 201
    thread = threading.Thread(target=server.serve_forever)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()
    thread.join(5)
    assert not thread.is_alive()


@pytest.fixture
def blob_host(blob_server):
    host, port = blob_server.server_address
    return f"http://{host}:{port}"
