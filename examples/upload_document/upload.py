# ruff: noqa: F403, F405
# uploads ./temp1.pdf as pdf/<order>/<barcode>.pdf and prints a SAS token
# scoped to it. credentials come from AZURE_* environment variables.
import logging
import sys
from blobsign import config
from blobsign.azure import *

logging.basicConfig(level=logging.INFO)

storage = config.load(config.env_preferences())
if not storage:
    storage.raise_for_invalid()

order_no, barcode = sys.argv[1:3]
request = UploadRequest(barcode=barcode, order_no=order_no, sequence="1")
url = upload(storage, request)
if url is None:
    sys.exit(1)

params = SasParameters.now(file_name=object_key(request))
print(url)
print(build_resource_token(storage, params))
