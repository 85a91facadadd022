"""
Shared fixtures: isolated AWS environment, an SSE-C key file and an in-memory S3 backend.
"""
import base64
import hashlib
import io

import pytest
from botocore.exceptions import ClientError

CUSTOMER_KEY = b"0123456789abcdef0123456789abcdef"
CUSTOMER_KEY_B64 = base64.b64encode(CUSTOMER_KEY).decode("ascii")
CUSTOMER_KEY_MD5 = base64.b64encode(hashlib.md5(CUSTOMER_KEY).digest()).decode("ascii")


@pytest.fixture(autouse=True)
def aws_env(monkeypatch, tmp_path):
    """Static fake credentials and no shared config, so clients never look beyond the environment."""
    for var in ("AWS_PROFILE", "AWS_DEFAULT_PROFILE", "AWS_DEFAULT_REGION", "AWS_REGION", "AWS_ENDPOINT_URL",
                "AWS_ENDPOINT_URL_S3", "AWS_CA_BUNDLE", "AWS_SESSION_TOKEN", "AWS_SECURITY_TOKEN"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIDEXAMPLE")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY")
    monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "aws-config"))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "aws-credentials"))
    monkeypatch.setenv("AWS_EC2_METADATA_DISABLED", "true")


@pytest.fixture
def customer_key_file(tmp_path):
    path = tmp_path / "sse-c.key"
    path.write_text(CUSTOMER_KEY_B64 + "\n")
    return str(path)


def _client_error(code, operation, status=400):
    return ClientError({"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}}, operation)


class FakePaginator:
    def __init__(self, backend, page_size):
        self.backend = backend
        self.page_size = page_size

    def paginate(self, Bucket, Prefix="", Delimiter=None):
        keys = sorted(k for (b, k) in self.backend.objects if b == Bucket and k.startswith(Prefix))
        if Delimiter:
            contents, prefixes = [], []
            for key in keys:
                rest = key[len(Prefix):]
                if Delimiter in rest:
                    common = Prefix + rest.split(Delimiter, 1)[0] + Delimiter
                    if common not in prefixes:
                        prefixes.append(common)
                else:
                    contents.append(key)
            yield {"Contents": [{"Key": k} for k in contents], "CommonPrefixes": [{"Prefix": p} for p in prefixes]}
            return
        for start in range(0, len(keys), self.page_size):
            yield {"Contents": [{"Key": k} for k in keys[start:start + self.page_size]]}
        if not keys:
            yield {"KeyCount": 0}


class FakeS3:
    """In-memory stand-in for the S3 client that enforces SSE-C the way S3 does."""

    def __init__(self, page_size=2):
        self.objects = {}
        self.page_size = page_size
        self.calls = []

    def _check_customer_key(self, stored, kwargs, operation):
        expected_md5 = stored.get("SSECustomerKeyMD5")
        if expected_md5 is None:
            return
        if "SSECustomerKey" not in kwargs:
            raise _client_error("InvalidRequest", operation)
        raw = base64.b64decode(kwargs["SSECustomerKey"])
        actual_md5 = base64.b64encode(hashlib.md5(raw).digest()).decode("ascii")
        if actual_md5 != kwargs.get("SSECustomerKeyMD5") or actual_md5 != expected_md5:
            raise _client_error("AccessDenied", operation, status=403)

    def upload_fileobj(self, Fileobj, Bucket, Key, ExtraArgs=None, Callback=None, Config=None):
        self.calls.append(("upload_fileobj", Bucket, Key, dict(ExtraArgs or {})))
        self.objects[(Bucket, Key)] = (Fileobj.read(), dict(ExtraArgs or {}))

    def head_object(self, Bucket, Key, **kwargs):
        self.calls.append(("head_object", Bucket, Key, kwargs))
        if (Bucket, Key) not in self.objects:
            raise _client_error("NotFound", "HeadObject", status=404)
        self._check_customer_key(self.objects[(Bucket, Key)][1], kwargs, "HeadObject")
        return {"ContentLength": len(self.objects[(Bucket, Key)][0])}

    def get_object(self, Bucket, Key, **kwargs):
        self.calls.append(("get_object", Bucket, Key, kwargs))
        if (Bucket, Key) not in self.objects:
            raise _client_error("NoSuchKey", "GetObject", status=404)
        data, stored = self.objects[(Bucket, Key)]
        self._check_customer_key(stored, kwargs, "GetObject")
        return {"Body": io.BytesIO(data)}

    def delete_object(self, Bucket, Key):
        self.calls.append(("delete_object", Bucket, Key, {}))
        self.objects.pop((Bucket, Key), None)
        return {}

    def get_paginator(self, operation_name):
        assert operation_name == "list_objects_v2"
        return FakePaginator(self, self.page_size)

    def generate_presigned_url(self, ClientMethod, Params=None, ExpiresIn=3600, HttpMethod=None):
        self.calls.append(("generate_presigned_url", ClientMethod, Params, ExpiresIn))
        return f"https://fake.example/{Params['Bucket']}/{Params['Key']}?expires={ExpiresIn}"

    def put(self, bucket, key, data=b""):
        self.objects[(bucket, key)] = (data, {})


@pytest.fixture
def fake_s3():
    return FakeS3()
