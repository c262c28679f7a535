import dataclasses
import http.client
import socket
import urllib.error
import pytest
from blobsign import SigningInputError, UploadError
from blobsign.config import Invalid
from blobsign import azure
from blobsign.azure import *


@pytest.fixture
def local_config(storage_config, blob_host):
    return dataclasses.replace(storage_config, host_url=blob_host)


@pytest.fixture
def temp_file(tmp_path):
    path = tmp_path / "temp3.pdf"
    path.write_bytes(b"%PDF-1.4 generated document")
    return path


def test_make_urls(storage_config):
    request = UploadRequest(path=["pdf", "123"], barcode="X1", file_type="pdf")
    assert object_key(request) == "pdf/123/X1.pdf"
    assert blob_path(storage_config, request) == "c/pdf/123/X1.pdf"
    assert blob_url(storage_config, request) == "https://h/c/pdf/123/X1.pdf"
    assert public_url(storage_config, request) == "https://h/c/pdf/123/X1.pdf"

    request = UploadRequest(order_no="555", barcode="X1")
    assert request.file_type == "pdf"
    assert blob_url(storage_config, request) == "https://h/c/pdf/555/X1.pdf"

    request = UploadRequest(path=["calendar", 2024], barcode="X1", file_type="jpg")
    assert public_url(storage_config, request) == "https://h/c/calendar/2024/X1.jpg"
    assert public_url(storage_config, request) == blob_url(storage_config, request)


def test_make_urls_invalid(storage_config):
    with pytest.raises(SigningInputError):
        blob_url(storage_config, UploadRequest(barcode="X1"))
    with pytest.raises(SigningInputError):
        blob_url(storage_config, UploadRequest(barcode="", order_no="1"))


def test_temp_file_path(tmp_path):
    request = UploadRequest(barcode="X1", order_no="1", sequence="3")
    assert temp_file_path(tmp_path, request) == tmp_path / "temp3.pdf"
    request = UploadRequest(barcode="X1", order_no="1", file_type="jpg")
    assert temp_file_path(tmp_path, request) == tmp_path / "temp.jpg"


def test_upload_working(local_config, blob_server, blob_host, temp_file, clock):
    request = UploadRequest(path=["pdf", "123"], barcode="X1", sequence="3")
    result = upload(local_config, request, temp_dir=temp_file.parent, clock=clock)
    assert result == f"{blob_host}/c/pdf/123/X1.pdf"

    ((path, headers, body),) = blob_server.received
    assert path == "/c/pdf/123/X1.pdf"
    assert body == temp_file.read_bytes()
    expected = build_auth_headers(
        local_config,
        "PUT",
        "c/pdf/123/X1.pdf",
        content_type="application/pdf",
        blob_size=len(body),
        clock=clock,
    )
    for key, value in expected.items():
        assert headers[key] == value
    assert headers["Content-Type"] == "application/pdf"
    assert headers["Content-Length"] == str(len(body))
    assert headers["Access-Control-Request-Method"] == "PUT"
    assert headers["x-ms-date"] == "Mon, 01 Jan 2024 00:00:00 GMT"


def test_upload_rejected(local_config, blob_server, blob_host, temp_file, caplog):
    blob_server.status = 403
    request = UploadRequest(path=["pdf", "123"], barcode="X1", sequence="3")
    result = upload(local_config, request, temp_dir=temp_file.parent)
    assert result is None
    assert len(blob_server.received) == 1  # no retry
    assert f"{blob_host}/c/pdf/123/X1.pdf" in caplog.text


def test_upload_unreachable(storage_config, temp_file):
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    config = dataclasses.replace(storage_config, host_url=f"http://127.0.0.1:{port}")
    request = UploadRequest(order_no="1", barcode="X1", sequence="3")
    assert upload(config, request, temp_dir=temp_file.parent) is None


def test_upload_invalid_config(temp_file, caplog):
    request = UploadRequest(order_no="1", barcode="X1", sequence="3")
    assert upload(Invalid("incomplete", ("azure_host",)), request) is None
    assert upload(None, request) is None
    assert "absent" in caplog.text


def test_upload_missing_file(local_config, tmp_path, blob_server, caplog):
    request = UploadRequest(order_no="1", barcode="X1", sequence="9")
    assert upload(local_config, request, temp_dir=tmp_path) is None
    assert not blob_server.received
    assert str(tmp_path / "temp9.pdf") in caplog.text


@pytest.mark.parametrize(
    ["barcode", "encoded"],
    [("X 1", "X%201"), ("Zürich", "Z%C3%BCrich")],
)
def test_upload_encoded_path(
    local_config, blob_server, blob_host, temp_file, clock, barcode, encoded
):
    request = UploadRequest(path=["pdf", "123"], barcode=barcode, sequence="3")
    result = upload(local_config, request, temp_dir=temp_file.parent, clock=clock)
    assert result == f"{blob_host}/c/pdf/123/{encoded}.pdf"

    ((path, headers, body),) = blob_server.received
    assert path == f"/c/pdf/123/{encoded}.pdf"
    expected = build_auth_headers(
        local_config,
        "PUT",
        f"c/pdf/123/{encoded}.pdf",
        content_type="application/pdf",
        blob_size=len(body),
        clock=clock,
    )
    assert headers["Authorization"] == expected["Authorization"]


def test_encoded_urls(storage_config):
    assert encode_path("c/pdf/a b/Zürich.pdf") == "c/pdf/a%20b/Z%C3%BCrich.pdf"
    request = UploadRequest(path=["cal endar"], barcode="Zürich", file_type="jpg")
    assert public_url(storage_config, request) == "https://h/c/cal%20endar/Z%C3%BCrich.jpg"
    assert public_url(storage_config, request) == blob_url(storage_config, request)


def test_uploader_protocol_error(storage_config, temp_file, monkeypatch):
    def broken_worker(request, options):
        raise http.client.BadStatusLine("garbage")

    monkeypatch.setattr(azure, "urlopen_worker", broken_worker)
    with pytest.raises(UploadError) as excinfo:
        AzureBlobUploader(storage_config).upload_sync(temp_file, "c/x.pdf")
    assert excinfo.value.url == "https://h/c/x.pdf"


def test_uploader_status(local_config, blob_server, temp_file):
    blob_server.status = 500
    uploader = AzureBlobUploader(local_config)
    with pytest.raises(UploadError) as excinfo:
        uploader.upload_sync(temp_file, "c/x.pdf")
    assert excinfo.value.status == 500
    assert excinfo.value.url == local_config.host_url + "/c/x.pdf"


def test_uploader_closes_file(storage_config, temp_file, monkeypatch):
    opened = []

    def failing_worker(request, options):
        opened.append(request.data)
        raise urllib.error.HTTPError(request.full_url, 503, "busy", {}, None)

    monkeypatch.setattr(azure, "urlopen_worker", failing_worker)
    with pytest.raises(UploadError):
        AzureBlobUploader(storage_config).upload_sync(temp_file, "c/x.pdf")
    (f,) = opened
    assert f.closed


def test_uploader_requires_config():
    with pytest.raises(ValueError):
        AzureBlobUploader(Invalid("disabled"))
