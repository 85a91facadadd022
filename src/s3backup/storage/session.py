from __future__ import annotations

import atexit
import contextlib
import os
import tempfile
from dataclasses import dataclass, replace
from urllib.parse import urlparse

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ProfileNotFound

from s3backup.errors import ConfigurationError
from s3backup.logging_config import get_logger

DEFAULT_REGION = "us-east-1"
SIGV4 = "s3v4"
# botocore's HMAC-SHA1 signer; presigning turns it into "s3-query".
LEGACY_SIGV1 = "s3"

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionParams:
    """Everything needed to build one S3 client. Two clients built from equal params are interchangeable."""
    region: str
    endpoint_url: str | None = None
    force_path_style: bool = False
    profile: str | None = None
    verify: bool | str | None = None
    signature_version: str = SIGV4

    def for_endpoint(self, endpoint_url: str) -> SessionParams:
        return replace(self, endpoint_url=endpoint_url)

    def with_signature_version(self, signature_version: str) -> SessionParams:
        return replace(self, signature_version=signature_version)


def validate_endpoint_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"Invalid s3 url {url}, URL must be absolute and start with http:// or https://")
    return url


def signature_version_for(value: str) -> str:
    return LEGACY_SIGV1 if value == "1" else SIGV4


def _remove_file(path: str) -> None:
    with contextlib.suppress(FileNotFoundError):
        os.unlink(path)


def write_ca_bundle(pem: str) -> str:
    """Persist PEM text to a private temp file, since botocore only takes a bundle path."""
    with tempfile.NamedTemporaryFile("w", prefix="s3backup-ca-", suffix=".pem", delete=False, encoding="utf-8") as handle:
        handle.write(pem)
    atexit.register(_remove_file, handle.name)
    return handle.name


def resolve_verify(insecure_skip_tls_verify: bool, ca_cert: str) -> bool | str | None:
    if insecure_skip_tls_verify:
        logger.warning("TLS certificate verification is disabled for the object store endpoint")
        return False
    if ca_cert:
        return write_ca_bundle(ca_cert)
    return None


def build_client_config(params: SessionParams) -> Config:
    return Config(
        region_name=params.region,
        signature_version=params.signature_version,
        s3={"addressing_style": "path" if params.force_path_style else "auto"},
    )


def build_s3_client(params: SessionParams):
    """Create an S3 client from the shared credential chain, optionally pinned to a named profile.

    The endpoint override is only applied to this S3 client; any other service
    created from the same boto3 session keeps its default endpoint resolution.
    """
    client_kwargs = {
        "config": build_client_config(params),
        "region_name": params.region,
    }
    if params.endpoint_url:
        client_kwargs["endpoint_url"] = params.endpoint_url
    if params.verify is not None:
        client_kwargs["verify"] = params.verify
    try:
        session = boto3.session.Session(profile_name=params.profile or None)
        client = session.client("s3", **client_kwargs)
    except ProfileNotFound as exc:
        raise ConfigurationError(f"credential profile {params.profile!r} not found") from exc
    except (BotoCoreError, ValueError) as exc:
        raise ConfigurationError(f"unable to create s3 client: {exc}") from exc

    logger.debug(
        "Built s3 client: region=%s endpoint=%s path_style=%s signature_version=%s",
        params.region,
        params.endpoint_url or "default",
        params.force_path_style,
        params.signature_version,
    )
    return client
