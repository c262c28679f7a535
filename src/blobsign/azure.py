import datetime
import http.client
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence
import logging

from . import (
    USER_AGENT,
    X_MS_VERSION,
    X_MS_BLOB_TYPE,
    SAS_VALIDITY,
    SigningInputError,
    UploadError,
    as_utc,
    format_iso8601,
    format_rfc1123,
    sign_fields,
    utcnow,
)
from .config import Invalid, StorageConfig

logger = logging.getLogger(__name__)

METHOD = "PUT"
FOLDER = "pdf"
FILE_TYPE = "pdf"
UPLOAD_CONTENT_TYPE = "application/pdf"
DEFAULT_CONTENT_TYPE = "image/png"

# position of x-ms-blob-type, right before x-ms-date
BLOB_TYPE_INDEX = 12

SAS_PERMISSIONS = "w"
SAS_SERVICES = "b"
SAS_RESOURCE_TYPES = "o"
SAS_PROTOCOL = "https"
SAS_RESOURCE = "b"
SAS_IDENTIFIER = "access"


# ------------------------------------------------------------------------------
# Shared Key
# ------------------------------------------------------------------------------
def canonical_request(
    config: StorageConfig,
    method: str,
    object_path: str,
    content_type: str,
    blob_size: int,
    date: str,
):
    """
    string-to-sign lines for Blob service Shared Key, version 2015-02-21+

    https://learn.microsoft.com/en-us/rest/api/storageservices/authorize-with-shared-key#blob-queue-and-file-services-shared-key-authorization
    """
    if not method:
        raise SigningInputError("method is empty")
    if not object_path:
        raise SigningInputError("object path is empty")
    if not date:
        raise SigningInputError("x-ms-date is empty")
    method = method.upper()
    is_put = method == "PUT"
    # XXX: zero length is signed as an empty line, not "0", as required since
    # 2015-02-21. the service rejects "0" here, do not change it back.
    content_length = str(blob_size) if is_put and blob_size else ""
    lines = [
        method,
        "",  # content-encoding
        "",  # content-language
        content_length,
        "",  # content-md5
        content_type if is_put else "",
        "",  # if-modified-since
        "",  # if-match
        "",  # if-none-match
        "",  # if-unmodified-since
        "",  # range
        "",
        "x-ms-date:" + date,
        "x-ms-version:" + X_MS_VERSION,
        "/" + config.account_name + "/" + object_path.lstrip("/"),
    ]
    if is_put:
        lines.insert(BLOB_TYPE_INDEX, "x-ms-blob-type:" + X_MS_BLOB_TYPE)
    return lines


def build_auth_headers(
    config: StorageConfig,
    method: str,
    object_path: str,
    content_type: str = DEFAULT_CONTENT_TYPE,
    blob_size: int = 0,
    clock: Callable[[], datetime.datetime] = utcnow,
):
    """
    returns Authorization and the x-ms-* headers it was computed against,
    the request must carry all of them unchanged
    """
    date = format_rfc1123(clock())
    lines = canonical_request(
        config, method, object_path, content_type or DEFAULT_CONTENT_TYPE, blob_size, date
    )
    signature = sign_fields(lines, config.account_key)
    headers = {
        "Authorization": f"SharedKey {config.account_name}:{signature}",
        "x-ms-date": date,
        "x-ms-version": X_MS_VERSION,
    }
    if method.upper() == "PUT":
        headers["x-ms-blob-type"] = X_MS_BLOB_TYPE
    return headers


# ------------------------------------------------------------------------------
# Shared Access Signatures
# ------------------------------------------------------------------------------
@dataclass(frozen=True)
class SasParameters:
    start: datetime.datetime
    expiry: datetime.datetime
    permissions: str = SAS_PERMISSIONS
    resource: str = SAS_RESOURCE
    resource_types: str = SAS_RESOURCE_TYPES
    services: str = SAS_SERVICES
    protocol: str = SAS_PROTOCOL
    version: str = X_MS_VERSION
    identifier: str = SAS_IDENTIFIER
    ip: str = ""
    file_name: str = ""

    def __post_init__(self):
        start = as_utc(self.start)
        expiry = as_utc(self.expiry)
        if not start < expiry:
            raise SigningInputError(f"SAS start {start} is not before expiry {expiry}")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "expiry", expiry)

    @classmethod
    def starting_at(cls, start: datetime.datetime, **kwargs):
        start = as_utc(start)
        return cls(start=start, expiry=start + SAS_VALIDITY, **kwargs)

    @classmethod
    def now(cls, clock: Callable[[], datetime.datetime] = utcnow, **kwargs):
        return cls.starting_at(clock(), **kwargs)

    @property
    def signed_start(self):
        return format_iso8601(self.start)

    @property
    def signed_expiry(self):
        return format_iso8601(self.expiry)


def canonicalized_resource(config: StorageConfig, file_name: str = ""):
    resource = "/blob/" + config.account_name + "/" + config.container_name
    if file_name:
        resource += "/" + file_name
    return resource


def encode_query(pairs):
    # timestamps keep their colons, signature gets +/= escaped
    return "?" + urllib.parse.urlencode(
        pairs, safe=":", quote_via=urllib.parse.quote
    )


def _params(params, clock):
    if params is None:
        params = SasParameters.now(clock)
    return params


def build_resource_token(
    config: StorageConfig,
    params: Optional[SasParameters] = None,
    clock: Callable[[], datetime.datetime] = utcnow,
):
    """
    service SAS for the container, or a blob in it when params.file_name is set

    https://learn.microsoft.com/en-us/rest/api/storageservices/create-service-sas#version-2018-11-09-and-later
    """
    params = _params(params, clock)
    fields = [
        params.permissions,
        params.signed_start,
        params.signed_expiry,
        canonicalized_resource(config, params.file_name),
        "",  # signedIdentifier
        params.ip,
        params.protocol,
        params.version,
        params.resource,
        "",  # signedSnapshotTime
        "",  # rscc
        "",  # rscd
        "",  # rsce
        "",  # rscl
        "",  # rsct
    ]
    signature = sign_fields(fields, config.account_key)
    pairs = [
        ("sv", params.version),
        ("sr", params.resource),
        ("srt", params.resource_types),
        ("sp", params.permissions),
        ("se", params.signed_expiry),
        ("st", params.signed_start),
    ]
    if params.ip:
        pairs.append(("sip", params.ip))
    pairs += [("spr", params.protocol), ("sig", signature)]
    return encode_query(pairs)


def build_service_options_token(
    config: StorageConfig,
    params: Optional[SasParameters] = None,
    clock: Callable[[], datetime.datetime] = utcnow,
):
    """
    account SAS scoped by service and resource type flags

    https://learn.microsoft.com/en-us/rest/api/storageservices/create-account-sas
    """
    params = _params(params, clock)
    fields = [
        config.account_name,
        params.permissions,
        params.services,
        params.resource_types,
        params.signed_start,
        params.signed_expiry,
        params.ip,
        params.protocol,
        params.version,
    ]
    signature = sign_fields(fields, config.account_key)
    pairs = [
        ("sv", params.version),
        ("ss", params.services),
        ("srt", params.resource_types),
        ("sp", params.permissions),
        ("se", params.signed_expiry),
        ("st", params.signed_start),
    ]
    if params.ip:
        pairs.append(("sip", params.ip))
    pairs += [("spr", params.protocol), ("sig", signature)]
    return encode_query(pairs)


def build_account_token(
    config: StorageConfig,
    params: Optional[SasParameters] = None,
    clock: Callable[[], datetime.datetime] = utcnow,
):
    """container SAS bound to a stored access policy (si)"""
    params = _params(params, clock)
    fields = [
        params.permissions,
        params.signed_start,
        params.signed_expiry,
        canonicalized_resource(config),
        params.identifier,
        params.version,
    ]
    signature = sign_fields(fields, config.account_key)
    return encode_query(
        [
            ("sv", params.version),
            ("sr", params.resource),
            ("sp", params.permissions),
            ("se", params.signed_expiry),
            ("st", params.signed_start),
            ("si", params.identifier),
            ("sig", signature),
        ]
    )


def build_sas_tokens(
    config: StorageConfig,
    params: Optional[SasParameters] = None,
    clock: Callable[[], datetime.datetime] = utcnow,
):
    """all three tokens over one validity window"""
    params = _params(params, clock)
    return {
        "account": build_account_token(config, params),
        "uri": build_resource_token(config, params),
        "serviceOptions": build_service_options_token(config, params),
    }


# ------------------------------------------------------------------------------
# Upload
# ------------------------------------------------------------------------------
@dataclass(frozen=True)
class UploadRequest:
    barcode: str
    path: Sequence[str] = ()
    order_no: str = ""
    file_type: str = ""
    sequence: str = ""

    def __post_init__(self):
        if not self.file_type:
            object.__setattr__(self, "file_type", FILE_TYPE)
        if self.path:
            object.__setattr__(self, "path", tuple(str(p) for p in self.path))

    @property
    def folder(self):
        if self.path:
            return "/".join(self.path)
        if not self.order_no:
            raise SigningInputError("either path or order_no is required")
        return FOLDER + "/" + str(self.order_no)

    @property
    def file_name(self):
        if not self.barcode:
            raise SigningInputError("barcode is empty")
        return f"{self.barcode}.{self.file_type}"


def object_key(request: UploadRequest):
    return request.folder + "/" + request.file_name


def blob_path(config: StorageConfig, request: UploadRequest):
    """path under the account, this is what gets signed"""
    return config.container_name + "/" + object_key(request)


def encode_path(path: str):
    """percent-encodes a blob path, the same form goes on the wire and gets signed"""
    return urllib.parse.quote(path, safe="/")


def blob_url(config: StorageConfig, request: UploadRequest):
    return config.host_url + "/" + encode_path(blob_path(config, request))


def public_url(config: StorageConfig, request: UploadRequest):
    if request.file_type == "jpg":
        # XXX: images had their own URL assembly historically, it has always
        # matched the generic one. kept apart until someone confirms jpg links
        # are meant to look the same.
        return "/".join(
            (
                config.host_url,
                encode_path(config.container_name),
                encode_path(request.folder),
                encode_path(request.file_name),
            )
        )
    return blob_url(config, request)


def temp_file_path(temp_dir, request: UploadRequest):
    stem = "temp" + str(request.sequence) if request.sequence else "temp"
    return Path(temp_dir) / f"{stem}.{request.file_type}"


def urlopen_worker(request, options):
    logger.debug("sending request to %s", request.full_url)
    with urllib.request.urlopen(request, **options) as f:
        logger.debug("url %s got status: %s, headers: %s", f.url, f.status, f.headers)
        logger.debug("body: %r", f.read())
        return f.status


class AzureBlobUploader:
    """single attempt PUT of a local file authorized by Shared Key"""

    def __init__(
        self,
        config: StorageConfig,
        urlopen_options=None,
        clock: Callable[[], datetime.datetime] = utcnow,
        content_type: str = UPLOAD_CONTENT_TYPE,
    ):
        if not isinstance(config, StorageConfig):
            raise ValueError(f"invalid azure blob configuration {config!r}")
        self.config = config
        self.urlopen_options = urlopen_options or {}
        self.clock = clock
        self.content_type = content_type

    def upload_sync(self, path, object_path: str):
        """
        uploads path as {host}/{object_path}, object_path starts with container.
        object_path is percent-encoded here, pass it unencoded
        """
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"path {path} not a file")

        object_path = encode_path(object_path)
        upload_url = self.config.host_url + "/" + object_path
        # caller should guarantee no further change to the file
        size = path.stat().st_size
        headers = build_auth_headers(
            self.config,
            METHOD,
            object_path,
            content_type=self.content_type,
            blob_size=size,
            clock=self.clock,
        )
        headers.update(
            {
                "Access-Control-Request-Method": METHOD,
                "Content-Type": self.content_type,
                "Content-Length": str(size),
                "User-Agent": USER_AGENT,
            }
        )
        logger.debug("uploading %s (%d bytes) to %s", path, size, upload_url)
        with path.open("rb") as f:
            # https://learn.microsoft.com/en-us/rest/api/storageservices/put-blob
            request = urllib.request.Request(
                url=upload_url,
                method=METHOD,
                data=f,
                headers=headers,
            )
            try:
                status = urlopen_worker(request, self.urlopen_options)
            except urllib.error.HTTPError as e:
                raise UploadError(
                    f"upload rejected with status {e.code}", url=upload_url, status=e.code
                ) from e
            except (OSError, http.client.HTTPException) as e:
                raise UploadError(f"upload failed: {e}", url=upload_url) from e
        if not 200 <= status < 300:
            raise UploadError(
                f"unexpected status {status}", url=upload_url, status=status
            )
        return upload_url


def upload(config, request: UploadRequest, temp_dir=".", **kwargs):
    """
    uploads the generated temp file for request, returns the public url or
    None. failures are logged and not retried, the caller decides.
    """
    if isinstance(config, Invalid) or config is None:
        logger.error("azure configuration for document upload is absent")
        return None
    uploader = AzureBlobUploader(config, **kwargs)
    url = blob_url(config, request)
    temp_path = temp_file_path(temp_dir, request)
    try:
        uploader.upload_sync(temp_path, blob_path(config, request))
    except FileNotFoundError:
        logger.error("generated file %s for %s is missing", temp_path, url)
        return None
    except UploadError as e:
        logger.error(
            "content url %s: %s, please check the document upload service", url, e
        )
        return None
    logger.info("uploaded %s", url)
    return public_url(config, request)
