from __future__ import annotations

import io
import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, BinaryIO, Mapping, Protocol
from urllib.parse import unquote, urlsplit, urlunsplit

from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from s3backup.config.object_store_config import ObjectStoreOptions, load_object_store_options
from s3backup.errors import ObjectStoreError
from s3backup.logging_config import get_logger, with_context
from s3backup.storage.encryption import SSE_CUSTOMER_HEADER_PREFIX, EncryptionPolicy
from s3backup.storage.region import get_bucket_region
from s3backup.storage.session import (
    DEFAULT_REGION,
    SessionParams,
    build_s3_client,
    resolve_verify,
    signature_version_for,
    validate_endpoint_url,
)

NOT_FOUND_CODES = frozenset({"NotFound", "404", "NoSuchKey"})

logger = get_logger(__name__)


class S3Client(Protocol):
    """The slice of the boto3 S3 client the store relies on."""

    def head_object(self, **kwargs: Any) -> dict[str, Any]: ...

    def get_object(self, **kwargs: Any) -> dict[str, Any]: ...

    def delete_object(self, **kwargs: Any) -> dict[str, Any]: ...

    def get_paginator(self, operation_name: str) -> Any: ...

    def generate_presigned_url(self, ClientMethod: str, Params: dict | None = None, ExpiresIn: int = 3600, HttpMethod: str | None = None) -> str: ...

    def upload_fileobj(self, Fileobj: BinaryIO, Bucket: str, Key: str, ExtraArgs: dict | None = None, Callback: Any = None, Config: Any = None) -> None: ...


@dataclass(frozen=True)
class ObjectStore:
    """Backup artifact storage on S3 or an S3-compatible service.

    Built once (see ``from_config``) and read-only afterwards, so a single instance
    can be shared between threads. ``presign_client`` falls back to ``client`` when
    no separate public endpoint or signer is needed.
    """
    client: S3Client
    presign_client: S3Client | None = None
    encryption: EncryptionPolicy = field(default_factory=EncryptionPolicy)

    def __post_init__(self) -> None:
        if self.presign_client is None:
            object.__setattr__(self, "presign_client", self.client)

    @classmethod
    def from_config(cls, config: Mapping[str, str]) -> ObjectStore:
        return cls.from_options(load_object_store_options(config))

    @classmethod
    def from_options(cls, options: ObjectStoreOptions) -> ObjectStore:
        s3_url = validate_endpoint_url(options.s3_url) if options.s3_url else None
        public_url = validate_endpoint_url(options.public_url) if options.public_url else None
        encryption = EncryptionPolicy.from_settings(
            kms_key_id=options.kms_key_id,
            algorithm=options.server_side_encryption,
            customer_key_file=options.customer_encryption_key_file,
        )

        region = options.region
        if not options.uses_custom_endpoint and not region:
            # Real AWS without an explicit region.
            region = get_bucket_region(options.bucket)

        params = SessionParams(
            region=region or DEFAULT_REGION,
            endpoint_url=s3_url,
            force_path_style=options.s3_force_path_style,
            profile=options.profile or None,
            verify=resolve_verify(options.insecure_skip_tls_verify, options.ca_cert),
        )
        client = build_s3_client(params)

        presign_params = params
        if public_url:
            presign_params = presign_params.for_endpoint(public_url)
        if options.signature_version:
            presign_params = presign_params.with_signature_version(signature_version_for(options.signature_version))
        presign_client = client if presign_params == params else build_s3_client(presign_params)

        logger.info(
            "Initialized object store: bucket=%s region=%s endpoint=%s public_endpoint=%s encryption=%s",
            options.bucket,
            params.region,
            s3_url or "aws",
            public_url or "none",
            _describe_encryption(encryption),
        )
        return cls(client=client, presign_client=presign_client, encryption=encryption)

    def put_object(self, bucket: str, key: str, body: BinaryIO | bytes) -> None:
        """Stream ``body`` to ``bucket/key``; large bodies are uploaded in parts by the transfer manager."""
        fileobj = io.BytesIO(body) if isinstance(body, (bytes, bytearray)) else body
        try:
            self.client.upload_fileobj(fileobj, bucket, key, ExtraArgs=self.encryption.write_args())
        except (ClientError, BotoCoreError, S3UploadFailedError) as exc:
            raise ObjectStoreError("putting object", key, exc) from exc

    def object_exists(self, bucket: str, key: str) -> bool:
        log = with_context(logger, bucket=bucket, key=key)
        log.debug("Checking if object exists")
        try:
            self.client.head_object(Bucket=bucket, Key=key, **self.encryption.read_args())
        except ClientError as exc:
            error = exc.response.get("Error", {})
            code = error.get("Code")
            log.debug("head_object failed: code=%s message=%s", code, error.get("Message"))
            if code in NOT_FOUND_CODES:
                log.debug("Object doesn't exist - got not found")
                return False
            raise ObjectStoreError("checking object", key, exc) from exc
        except BotoCoreError as exc:
            raise ObjectStoreError("checking object", key, exc) from exc
        log.debug("Object exists")
        return True

    def get_object(self, bucket: str, key: str):
        """Return the streaming body of ``bucket/key``. The caller reads and closes it."""
        try:
            response = self.client.get_object(Bucket=bucket, Key=key, **self.encryption.read_args())
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStoreError("getting object", key, exc) from exc
        return response["Body"]

    def list_objects(self, bucket: str, prefix: str) -> list[str]:
        keys: list[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStoreError("listing objects under", prefix, exc) from exc

        # Reverse order puts real objects ahead of a pseudo-folder object that shares their
        # prefix (some providers materialize one), so callers deleting in order remove it last.
        keys.sort(reverse=True)
        return keys

    def list_common_prefixes(self, bucket: str, prefix: str, delimiter: str) -> list[str]:
        prefixes: list[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix, Delimiter=delimiter):
                prefixes.extend(entry["Prefix"] for entry in page.get("CommonPrefixes", []))
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStoreError("listing common prefixes under", prefix, exc) from exc
        return prefixes

    def delete_object(self, bucket: str, key: str) -> None:
        try:
            self.client.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStoreError("deleting object", key, exc) from exc

    def create_signed_url(self, bucket: str, key: str, ttl: timedelta | int | float) -> tuple[str, dict[str, str] | None]:
        """Pre-sign an anonymous GET for ``bucket/key`` valid for ``ttl``.

        With SSE-C configured the customer-key headers are part of the signature, and
        the same headers are returned so the downloader can send them unchanged.
        """
        log = with_context(logger, bucket=bucket, key=key)
        log.info("Start CreateSignedURL")

        seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else ttl
        if seconds <= 0:
            raise ValueError(f"ttl must be positive, got {ttl!r}")
        expires_in = math.ceil(seconds)

        params = {"Bucket": bucket, "Key": key, **self.encryption.read_args()}
        try:
            url = self.presign_client.generate_presigned_url("get_object", Params=params, ExpiresIn=expires_in)
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStoreError("signing url for object", key, exc) from exc

        headers = self.encryption.presign_headers()
        if headers:
            # The v1 query signer copies x-amz-* headers into the query string; the
            # key must only travel as a header, which the signature covers either way.
            url = _strip_customer_key_params(url)
            log.info("CreateSignedURL add sse headers")
        return url, headers


def _strip_customer_key_params(url: str) -> str:
    parts = urlsplit(url)
    kept = [
        param for param in parts.query.split("&")
        if param and not unquote(param.split("=", 1)[0]).lower().startswith(SSE_CUSTOMER_HEADER_PREFIX)
    ]
    return urlunsplit(parts._replace(query="&".join(kept)))


def _describe_encryption(encryption: EncryptionPolicy) -> str:
    if encryption.kms_key_id:
        return "aws:kms"
    if encryption.uses_customer_key:
        return f"sse-c:{encryption.algorithm}"
    return encryption.algorithm or "bucket-default"


def init_object_store(config: Mapping[str, str]) -> ObjectStore:
    """One-time setup from the host's configuration map. Raises on any malformed option."""
    return ObjectStore.from_config(config)
