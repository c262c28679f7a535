import base64
import binascii
import datetime
import hashlib
import hmac
import logging
import sys
from typing import Iterable

# ------------------------------------------------------------------------------
# Constants
# ------------------------------------------------------------------------------
# make sure we follow https://packaging.python.org/en/latest/specifications/version-specifiers/#version-scheme
__version__ = "0.1.0.dev0"
USER_AGENT = f"blobsign/{__version__}"
logger = logging.getLogger("blobsign")

if sys.version_info[0] != 3 or sys.version_info[1] < 9:
    logger.warning("untested Python interpreter %s", sys.version)

# https://learn.microsoft.com/en-us/rest/api/storageservices/versioning-for-the-azure-storage-services
X_MS_VERSION = "2020-02-10"
X_MS_BLOB_TYPE = "BlockBlob"
SAS_VALIDITY = datetime.timedelta(hours=1)

RFC1123_FORMAT = "%a, %d %b %Y %H:%M:%S GMT"
ISO8601_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


# ------------------------------------------------------------------------------
# Exceptions
# ------------------------------------------------------------------------------
class BlobSignError(Exception):
    """base of all blobsign errors"""


class ConfigurationInvalid(BlobSignError):
    """required storage credentials are missing, nothing can be signed"""

    def __init__(self, message, missing=()):
        super().__init__(message)
        self.missing = tuple(missing)

    def __str__(self):
        msg = super().__str__()
        if self.missing:
            msg += " (missing: " + ", ".join(self.missing) + ")"
        return msg


class SigningInputError(BlobSignError, ValueError):
    """refusing to sign a key, timestamp or path that is missing or malformed"""


class UploadError(BlobSignError, RuntimeError):
    """storage service did not accept the upload"""

    def __init__(self, message, url=None, status=None):
        super().__init__(message)
        self.url = url
        self.status = status


# ------------------------------------------------------------------------------
# Utilities
# ------------------------------------------------------------------------------
def utcnow() -> datetime.datetime:
    """the default clock, any callable returning an aware datetime works"""
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """
    normalize a clock reading to UTC with second precision.
    naive datetimes are rejected, we can't guess what zone they are in.
    """
    if not isinstance(value, datetime.datetime):
        raise SigningInputError(f"expecting a datetime, got {value!r}")
    if value.tzinfo is None or value.utcoffset() is None:
        raise SigningInputError(f"timestamp {value!r} has no timezone")
    return value.astimezone(datetime.timezone.utc).replace(microsecond=0)


def format_rfc1123(value: datetime.datetime) -> str:
    return as_utc(value).strftime(RFC1123_FORMAT)


def format_iso8601(value: datetime.datetime) -> str:
    return as_utc(value).strftime(ISO8601_FORMAT)


def decode_key(key_base64: str) -> bytes:
    if not key_base64:
        raise SigningInputError("storage key is empty")
    try:
        key = base64.b64decode(key_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise SigningInputError("storage key is not valid base64") from e
    if not key:
        raise SigningInputError("storage key decodes to nothing")
    return key


def string_to_sign(fields: Iterable) -> str:
    """trims every field and joins them with newline, order is kept as-is"""
    return "\n".join(str(field).strip() for field in fields)


def sign_fields(fields: Iterable, key_base64: str) -> str:
    """
    HMAC-SHA256 over the canonical string using the decoded storage key,
    returns the base64 digest.

    https://learn.microsoft.com/en-us/rest/api/storageservices/authorize-with-shared-key
    """
    key = decode_key(key_base64)
    message = string_to_sign(fields).encode("utf-8")
    digest = hmac.new(key, message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")
