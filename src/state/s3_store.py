from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import boto3
from botocore.exceptions import ClientError

from common.log import get_logger
from .models import ANONYMOUS_USER


logger = get_logger(__name__)


class BackupNotFound(LookupError):
    """Raised when a requested backup object does not exist."""


@dataclass
class S3Location:
    bucket: str
    prefix: str


class S3BackupStore:
    """
    S3-backed destination for backup files, one folder per account.

    Usage
    - Provide a bucket, an optional key prefix and the owning user id.
    - `save(content, filename)` uploads to `<prefix><user>/<filename>` and
      returns True, or logs and returns False on an S3 error (save-sink contract).
    - `load(filename)` returns the stored text; `BackupNotFound` if missing.
    - `list_backups()` returns filenames under the user's folder, newest name last.

    Content is stored as produced by BackupManager: encrypted backups stay
    encrypted, plaintext backups are plaintext.
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        prefix: str = "backups/",
        user_id: Optional[str] = None,
        region_name: Optional[str] = None,
    ) -> None:
        if not bucket:
            raise ValueError("bucket is required")
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._loc = S3Location(bucket=bucket, prefix=prefix)
        self._user = user_id or ANONYMOUS_USER

    def _key(self, filename: str) -> str:
        if not filename or "/" in filename:
            raise ValueError(f"Invalid backup filename: {filename!r}")
        return f"{self._loc.prefix}{self._user}/{filename}"

    # -------- Core operations --------
    def save(self, content: str, filename: str) -> bool:
        key = self._key(filename)
        try:
            self._s3.put_object(
                Bucket=self._loc.bucket,
                Key=key,
                Body=content.encode("utf-8"),
                ContentType="application/octet-stream",
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            logger.error("s3_backup_upload_failed", bucket=self._loc.bucket, key=key, code=code)
            return False
        logger.info("s3_backup_uploaded", bucket=self._loc.bucket, key=key, size=len(content))
        return True

    def load(self, filename: str) -> str:
        """Download a backup's text.

        Raises:
        - BackupNotFound if the object does not exist.
        - botocore.exceptions.ClientError for other S3 issues.
        """
        key = self._key(filename)
        try:
            resp = self._s3.get_object(Bucket=self._loc.bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                raise BackupNotFound(f"s3://{self._loc.bucket}/{key}") from e
            raise
        return resp["Body"].read().decode("utf-8")

    def list_backups(self) -> List[str]:
        folder = f"{self._loc.prefix}{self._user}/"
        names: List[str] = []
        token: Optional[str] = None
        while True:
            kwargs = {"Bucket": self._loc.bucket, "Prefix": folder}
            if token:
                kwargs["ContinuationToken"] = token
            resp = self._s3.list_objects_v2(**kwargs)
            for item in resp.get("Contents", []) or []:
                names.append(item["Key"][len(folder):])
            if not resp.get("IsTruncated"):
                break
            token = resp.get("NextContinuationToken")
        return sorted(names)
