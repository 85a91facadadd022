from __future__ import annotations

import base64
import binascii
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from s3backup.errors import ConfigurationError

KMS_ALGORITHM = "aws:kms"

SSE_CUSTOMER_HEADER_PREFIX = "x-amz-server-side-encryption-customer-"
SSE_CUSTOMER_ALGORITHM_HEADER = "x-amz-server-side-encryption-customer-algorithm"
SSE_CUSTOMER_KEY_HEADER = "x-amz-server-side-encryption-customer-key"
SSE_CUSTOMER_KEY_MD5_HEADER = "x-amz-server-side-encryption-customer-key-md5"


def load_customer_key(path: str) -> tuple[bytes, str]:
    """Read a base64 SSE-C key file and return ``(raw_key, base64_text)`` from a single decode."""
    try:
        text = Path(path).read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"could not read customer encryption key file {path!r}: {exc}") from exc
    if not text:
        raise ConfigurationError(f"customer encryption key file {path!r} is empty")
    try:
        raw = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError(f"failed to decode sse customer key: {exc}") from exc
    return raw, text


@dataclass(frozen=True)
class EncryptionPolicy:
    """Server-side encryption parameters applied to every request the store makes.

    Write precedence is KMS, then customer key (SSE-C), then algorithm only, then
    nothing (bucket default). Reads only care about SSE-C: the provider needs the same
    key and digest again to decrypt.
    """
    kms_key_id: str = ""
    algorithm: str = ""
    customer_key: bytes | None = None
    customer_key_b64: str = ""

    def __post_init__(self) -> None:
        if (self.customer_key is None) != (not self.customer_key_b64):
            raise ValueError("customer_key and customer_key_b64 must be set together")

    @classmethod
    def from_settings(cls, kms_key_id: str = "", algorithm: str = "", customer_key_file: str = "") -> EncryptionPolicy:
        if not customer_key_file:
            return cls(kms_key_id=kms_key_id, algorithm=algorithm)
        raw, text = load_customer_key(customer_key_file)
        return cls(kms_key_id=kms_key_id, algorithm=algorithm, customer_key=raw, customer_key_b64=text)

    @property
    def uses_customer_key(self) -> bool:
        return bool(self.algorithm) and self.customer_key is not None

    @property
    def customer_key_md5(self) -> str:
        if self.customer_key is None:
            return ""
        return base64.b64encode(hashlib.md5(self.customer_key).digest()).decode("ascii")

    def _customer_key_args(self) -> dict[str, Any]:
        # MD5 is passed explicitly so botocore sends the key text as-is instead of re-encoding it.
        return {
            "SSECustomerAlgorithm": self.algorithm,
            "SSECustomerKey": self.customer_key_b64,
            "SSECustomerKeyMD5": self.customer_key_md5,
        }

    def write_args(self) -> dict[str, Any]:
        if self.kms_key_id:
            return {"ServerSideEncryption": KMS_ALGORITHM, "SSEKMSKeyId": self.kms_key_id}
        if self.uses_customer_key:
            return self._customer_key_args()
        if self.algorithm:
            return {"ServerSideEncryption": self.algorithm}
        return {}

    def read_args(self) -> dict[str, Any]:
        if self.uses_customer_key:
            return self._customer_key_args()
        return {}

    def presign_headers(self) -> dict[str, str] | None:
        """Headers a downloader must send with a pre-signed GET; ``None`` when SSE-C is off."""
        if not self.uses_customer_key:
            return None
        return {
            SSE_CUSTOMER_ALGORITHM_HEADER: self.algorithm,
            SSE_CUSTOMER_KEY_HEADER: self.customer_key_b64,
            SSE_CUSTOMER_KEY_MD5_HEADER: self.customer_key_md5,
        }
