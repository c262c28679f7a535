"""blobsign command line

signs Azure Blob Storage requests and uploads generated documents using
credentials from environment variables or a YAML file
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import blobsign
from blobsign import azure, config as configmod

logger = logging.getLogger("blobsign.client")


class Client:
    def __init__(self):
        parser = argparse.ArgumentParser("blobsign")
        parser.add_argument(
            "--verbosity",
            default="WARNING",
            choices=["DEBUG", "INFO", "WARNING", "ERROR"],
            help="logging verbosity",
        )
        parser.add_argument(
            "-c",
            "--config",
            type=Path,
            help="YAML file holding azure_* preferences, "
            "defaults to AZURE_* environment variables",
        )
        parser.add_argument(
            "--version", action="version", version=f"%(prog)s {blobsign.__version__}"
        )
        subparsers = parser.add_subparsers(title="command", required=True)

        check = subparsers.add_parser("check", help="validates the configuration")
        check.set_defaults(func=self.cmd_check)

        headers = subparsers.add_parser(
            "headers", help="prints Shared Key headers for a request"
        )
        headers.set_defaults(func=self.cmd_headers)
        headers.add_argument("method", help="HTTP method, e.g. PUT")
        headers.add_argument("object_path", help="container/path/to/blob")
        headers.add_argument("--content-type", default=azure.DEFAULT_CONTENT_TYPE)
        headers.add_argument("--size", type=int, default=0, help="blob size in bytes")

        sas = subparsers.add_parser("sas", help="prints SAS tokens valid for 1 hour")
        sas.set_defaults(func=self.cmd_sas)
        sas.add_argument(
            "--file-name", default="", help="scope the uri token to a single blob"
        )
        sas.add_argument(
            "--use-ip-whitelist",
            action="store_true",
            help="restrict tokens to azure_ip_whitelist",
        )

        upload = subparsers.add_parser(
            "upload", help="uploads a generated temp file, prints its url"
        )
        upload.set_defaults(func=self.cmd_upload)
        upload.add_argument("barcode")
        upload.add_argument("--path", nargs="+", default=(), help="folder segments")
        upload.add_argument("--order-no", default="")
        upload.add_argument("--file-type", default=azure.FILE_TYPE)
        upload.add_argument("--sequence", default="")
        upload.add_argument(
            "--temp-dir", type=Path, default=Path("."), help="where temp files are"
        )
        self.parser = parser

    def main(self, argv=None):
        args = self.parser.parse_args(argv)
        logging.basicConfig(level=getattr(logging, args.verbosity))
        logger.debug("args: %s", args)
        self.args = args
        return args.func()

    def preferences(self):
        path = self.args.config
        if path:
            if not path.is_file():
                self.parser.exit(1, f"config file {path} not found\n")
            return configmod.yaml_preferences(path)
        return configmod.env_preferences()

    def load_config(self):
        try:
            result = configmod.load(self.preferences())
        except blobsign.ConfigurationInvalid as e:
            self.parser.exit(1, f"{e}\n")
        if not result:
            self.parser.exit(
                1,
                f"configuration {result.reason}, missing: {', '.join(result.missing)}\n",
            )
        return result

    def cmd_check(self):
        config = self.load_config()
        print(f"OK {config.account_name}/{config.container_name}")
        return 0

    def cmd_headers(self):
        args = self.args
        config = self.load_config()
        try:
            headers = azure.build_auth_headers(
                config,
                args.method,
                args.object_path,
                content_type=args.content_type,
                blob_size=args.size,
            )
        except blobsign.SigningInputError as e:
            self.parser.exit(1, f"{e}\n")
        json.dump(headers, sys.stdout, indent=2)
        print()
        return 0

    def cmd_sas(self):
        args = self.args
        config = self.load_config()
        ip = config.ip_whitelist if args.use_ip_whitelist else ""
        params = azure.SasParameters.now(file_name=args.file_name, ip=ip)
        tokens = azure.build_sas_tokens(config, params)
        json.dump(tokens, sys.stdout, indent=2)
        print()
        return 0

    def cmd_upload(self):
        args = self.args
        config = self.load_config()
        request = azure.UploadRequest(
            barcode=args.barcode,
            path=args.path,
            order_no=args.order_no,
            file_type=args.file_type,
            sequence=args.sequence,
        )
        try:
            url = azure.upload(config, request, temp_dir=args.temp_dir)
        except blobsign.SigningInputError as e:
            self.parser.exit(1, f"{e}\n")
        if url is None:
            return 1
        print(url)
        return 0


def main(argv=None):
    return Client().main(argv)


if __name__ == "__main__":
    sys.exit(main())
