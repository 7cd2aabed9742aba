"""Direct access to the analysis-result bucket.

Used only as a fallback when the workout API cannot hand out a presigned
URL for a result video: the object is probed at its conventional path and,
if present, its public URL is returned.
"""

import logging
import time
from typing import Optional

import boto3
from botocore import UNSIGNED
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from thefit.core.config import Settings, get_settings
from thefit.observability import get_metrics_backend

logger = logging.getLogger(__name__)


class ResultStorage:
    """HEAD probe over the S3 result bucket."""

    PROVIDER = "result_storage"

    def __init__(self, settings: Optional[Settings] = None, client=None):
        self.settings = settings or get_settings()
        self._client = client
        self._metrics = get_metrics_backend()

    @property
    def client(self):
        """Get boto3 client, creating it on first use.

        Without credentials the client signs nothing, which is enough for a
        public-read bucket.
        """
        if self._client is None:
            if self.settings.result_storage_credentials:
                boto_config = BotoConfig(
                    signature_version="s3v4",
                    retries={"max_attempts": 2, "mode": "standard"},
                    connect_timeout=5,
                    read_timeout=10,
                )
                self._client = boto3.client(
                    "s3",
                    endpoint_url=self.settings.result_storage_endpoint_url,
                    aws_access_key_id=self.settings.aws_access_key_id,
                    aws_secret_access_key=self.settings.aws_secret_access_key,
                    region_name=self.settings.result_bucket_region,
                    config=boto_config,
                )
            else:
                self._client = boto3.client(
                    "s3",
                    endpoint_url=self.settings.result_storage_endpoint_url,
                    region_name=self.settings.result_bucket_region,
                    config=BotoConfig(signature_version=UNSIGNED),
                )
        return self._client

    @property
    def bucket_name(self) -> str:
        return self.settings.result_bucket_name

    def public_url(self, key: str) -> str:
        """Virtual-hosted style URL of an object."""
        if self.settings.result_storage_endpoint_url:
            base = self.settings.result_storage_endpoint_url.rstrip("/")
            return f"{base}/{self.bucket_name}/{key}"
        return (
            f"https://{self.bucket_name}.s3."
            f"{self.settings.result_bucket_region}.amazonaws.com/{key}"
        )

    def object_exists(self, key: str) -> bool:
        """HEAD the object; False when it is missing or unreachable."""
        start_time = time.perf_counter()
        status_code = 0
        try:
            self.client.head_object(Bucket=self.bucket_name, Key=key)
            status_code = 200
            return True
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            status_code = int(
                e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0
            )
            if error_code in ("404", "NoSuchKey", "NotFound"):
                logger.info("Result video not found in storage: %s", key)
            else:
                logger.warning("Result storage HEAD failed for %s: %s", key, e)
            return False
        except BotoCoreError as e:
            logger.warning("Result storage unreachable for %s: %s", key, e)
            return False
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self._metrics.observe_external_api(self.PROVIDER, "head_object", status_code, duration_ms)

    def find_public_url(self, key: str) -> Optional[str]:
        """Public URL of ``key`` if the object exists."""
        if self.object_exists(key):
            return self.public_url(key)
        return None
