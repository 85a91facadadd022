from __future__ import annotations

import requests

from s3backup.errors import RegionDiscoveryError
from s3backup.logging_config import get_logger

GLOBAL_ENDPOINT = "https://s3.amazonaws.com"
BUCKET_REGION_HEADER = "x-amz-bucket-region"
USER_AGENT = "s3backup-object-store"
LOOKUP_TIMEOUT_SECONDS = 10

logger = get_logger(__name__)


def _create_lookup_session() -> requests.Session:
    # No retry adapter: a failed lookup fails init and the host decides whether to retry.
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    return session


def get_bucket_region(bucket: str, session: requests.Session | None = None) -> str:
    """Find the region a bucket lives in using an anonymous HEAD against the AWS global endpoint.

    S3 reports the region in the ``x-amz-bucket-region`` header on 200, 301 and 403
    responses alike, so neither credentials nor redirect handling are needed.
    """
    if not bucket:
        raise RegionDiscoveryError(bucket, "bucket name is empty")

    if session is None:
        with _create_lookup_session() as owned:
            return _lookup_region(owned, bucket)
    return _lookup_region(session, bucket)


def _lookup_region(http: requests.Session, bucket: str) -> str:
    url = f"{GLOBAL_ENDPOINT}/{bucket}"
    try:
        response = http.head(url, allow_redirects=False, timeout=LOOKUP_TIMEOUT_SECONDS)
    except requests.exceptions.RequestException as exc:
        raise RegionDiscoveryError(bucket, str(exc)) from exc

    region = response.headers.get(BUCKET_REGION_HEADER)
    if response.status_code == 404:
        raise RegionDiscoveryError(bucket, "bucket not found")
    if not region:
        raise RegionDiscoveryError(bucket, f"no {BUCKET_REGION_HEADER} header in response (status={response.status_code})")

    logger.info("Resolved bucket region: bucket=%s region=%s", bucket, region)
    return region
