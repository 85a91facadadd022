from __future__ import annotations

import os
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from s3backup.errors import ConfigurationError

REGION_KEY = "region"
S3_URL_KEY = "s3Url"
PUBLIC_URL_KEY = "publicUrl"
KMS_KEY_ID_KEY = "kmsKeyId"
S3_FORCE_PATH_STYLE_KEY = "s3ForcePathStyle"
BUCKET_KEY = "bucket"
PREFIX_KEY = "prefix"
SIGNATURE_VERSION_KEY = "signatureVersion"
CREDENTIAL_PROFILE_KEY = "profile"
SERVER_SIDE_ENCRYPTION_KEY = "serverSideEncryption"
CUSTOMER_ENCRYPTION_KEY_FILE_KEY = "customerEncryptionKeyFile"
INSECURE_SKIP_TLS_VERIFY_KEY = "insecureSkipTLSVerify"
CA_CERT_KEY = "caCert"

# bucket, prefix and caCert are injected by the backup host, everything else comes from the user.
ALLOWED_CONFIG_KEYS: frozenset[str] = frozenset({
    REGION_KEY,
    S3_URL_KEY,
    PUBLIC_URL_KEY,
    KMS_KEY_ID_KEY,
    S3_FORCE_PATH_STYLE_KEY,
    BUCKET_KEY,
    PREFIX_KEY,
    SIGNATURE_VERSION_KEY,
    CREDENTIAL_PROFILE_KEY,
    SERVER_SIDE_ENCRYPTION_KEY,
    CUSTOMER_ENCRYPTION_KEY_FILE_KEY,
    INSECURE_SKIP_TLS_VERIFY_KEY,
    CA_CERT_KEY,
})

VALID_SIGNATURE_VERSIONS = ("1", "4")

_ENV_VARS: dict[str, str] = {
    REGION_KEY: "S3BACKUP_REGION",
    S3_URL_KEY: "S3BACKUP_S3_URL",
    PUBLIC_URL_KEY: "S3BACKUP_PUBLIC_URL",
    KMS_KEY_ID_KEY: "S3BACKUP_KMS_KEY_ID",
    S3_FORCE_PATH_STYLE_KEY: "S3BACKUP_S3_FORCE_PATH_STYLE",
    BUCKET_KEY: "S3BACKUP_BUCKET",
    PREFIX_KEY: "S3BACKUP_PREFIX",
    SIGNATURE_VERSION_KEY: "S3BACKUP_SIGNATURE_VERSION",
    CREDENTIAL_PROFILE_KEY: "S3BACKUP_PROFILE",
    SERVER_SIDE_ENCRYPTION_KEY: "S3BACKUP_SERVER_SIDE_ENCRYPTION",
    CUSTOMER_ENCRYPTION_KEY_FILE_KEY: "S3BACKUP_CUSTOMER_ENCRYPTION_KEY_FILE",
    INSECURE_SKIP_TLS_VERIFY_KEY: "S3BACKUP_INSECURE_SKIP_TLS_VERIFY",
    CA_CERT_KEY: "S3BACKUP_CA_CERT",
}

_TRUE_STRINGS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_STRINGS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def parse_bool(value: str) -> bool:
    """Strict boolean text parsing. Anything outside the two fixed spellings sets raises ValueError."""
    if value in _TRUE_STRINGS:
        return True
    if value in _FALSE_STRINGS:
        return False
    raise ValueError(f"expected bool, got {value!r}")


class ObjectStoreOptions(BaseModel):
    """Validated view of the string map handed over by the backup host.

    Only aliases are accepted as input so the wire keys stay the single allow-list;
    an empty string means "use the default" for every optional option.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    region: str = Field("", alias=REGION_KEY, description="AWS region of the bucket; discovered when empty and no s3Url is set.")
    s3_url: str = Field("", alias=S3_URL_KEY, description="Endpoint of an S3-compatible service.")
    public_url: str = Field("", alias=PUBLIC_URL_KEY, description="Externally reachable endpoint used only for pre-signed URLs.")
    kms_key_id: str = Field("", alias=KMS_KEY_ID_KEY, description="KMS key id; enables aws:kms SSE on writes.")
    s3_force_path_style: bool = Field(False, alias=S3_FORCE_PATH_STYLE_KEY, description="Put the bucket in the URL path.")
    bucket: str = Field("", alias=BUCKET_KEY)
    prefix: str = Field("", alias=PREFIX_KEY, description="Accepted for the host, not used by the store.")
    signature_version: str = Field("", alias=SIGNATURE_VERSION_KEY, description="'1' or '4' for pre-signed URLs.")
    profile: str = Field("", alias=CREDENTIAL_PROFILE_KEY, description="Named profile in the shared credentials chain.")
    server_side_encryption: str = Field("", alias=SERVER_SIDE_ENCRYPTION_KEY, description="SSE algorithm, e.g. AES256.")
    customer_encryption_key_file: str = Field("", alias=CUSTOMER_ENCRYPTION_KEY_FILE_KEY, description="Path to a base64 SSE-C key.")
    insecure_skip_tls_verify: bool = Field(False, alias=INSECURE_SKIP_TLS_VERIFY_KEY)
    ca_cert: str = Field("", alias=CA_CERT_KEY, description="PEM bundle trusted for the endpoint.")

    @field_validator("s3_force_path_style", "insecure_skip_tls_verify", mode="before")
    @classmethod
    def _parse_strict_bool(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return value
        if value is None or value == "":
            return False
        if not isinstance(value, str):
            raise ValueError(f"expected bool, got {value!r}")
        return parse_bool(value)

    @field_validator("signature_version")
    @classmethod
    def _check_signature_version(cls, value: str) -> str:
        if value and value not in VALID_SIGNATURE_VERSIONS:
            raise ValueError(f"invalid signature version: {value}")
        return value

    @property
    def uses_custom_endpoint(self) -> bool:
        return bool(self.s3_url)


def _describe_validation_error(exc: ValidationError) -> str:
    unknown: list[str] = []
    problems: list[str] = []
    for error in exc.errors():
        key = ".".join(str(part) for part in error["loc"])
        if error["type"] == "extra_forbidden":
            unknown.append(key)
        elif key in (S3_FORCE_PATH_STYLE_KEY, INSECURE_SKIP_TLS_VERIFY_KEY):
            problems.append(f"could not parse {key} (expected bool)")
        else:
            problems.append(f"invalid {key}: {error['msg']}")
    if unknown:
        problems.insert(0, f"config has invalid keys {sorted(unknown)}; valid keys are {sorted(ALLOWED_CONFIG_KEYS)}")
    return "; ".join(problems)


def load_object_store_options(config: Mapping[str, str]) -> ObjectStoreOptions:
    try:
        return ObjectStoreOptions.model_validate(dict(config))
    except ValidationError as exc:
        raise ConfigurationError(_describe_validation_error(exc)) from exc


def options_from_env(environ: Mapping[str, str] | None = None) -> ObjectStoreOptions:
    """Build options from ``S3BACKUP_*`` variables, for hosts that configure through the environment."""
    env = os.environ if environ is None else environ
    config = {key: env[var] for key, var in _ENV_VARS.items() if var in env}
    return load_object_store_options(config)
