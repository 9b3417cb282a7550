# event_backup/services/object_store.py
"""
Object store gateway over S3.

Missing keys come back as None / False (expected, non-fatal). Every other
ClientError is raised as StorageError carrying the key and the S3 error code.
"""

import json
from datetime import date, timedelta
from typing import Any, List, Optional, Tuple

from botocore.exceptions import ClientError

from event_backup.services import storage_keys
from event_backup.utils.errors import ConfigurationError, StorageError
from event_backup.utils.logger import get_logger

logger = get_logger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
STORAGE_CLASS = "STANDARD_IA"


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class ObjectStore:
    def __init__(self, client, bucket: Optional[str]):
        self.client = client
        self.bucket = bucket

    def _require_bucket(self) -> str:
        if not self.bucket:
            raise ConfigurationError("StorageBucket not configured")
        return self.bucket

    def _raise(self, op: str, key: str, exc: ClientError):
        code = _error_code(exc)
        logger.error(f"[S3] {op} failed for {self.bucket}/{key}: {code} {exc}")
        raise StorageError(f"{op} failed for {key}: {code}", key=key, code=code) from exc

    # ── Writes ─────────────────────────────────────────────────────────────
    def put_json(self, key: str, obj: Any):
        body = obj if isinstance(obj, str) else json.dumps(obj, default=str)
        bucket = self._require_bucket()
        try:
            self.client.put_object(
                Bucket=bucket,
                Key=key,
                Body=body.encode("utf-8"),
                ContentType="application/json",
                StorageClass=STORAGE_CLASS,
            )
        except ClientError as e:
            self._raise("put_json", key, e)
        logger.info(f"[S3] Wrote {bucket}/{key}")

    def put_binary(self, key: str, data: bytes, content_type: str):
        bucket = self._require_bucket()
        try:
            self.client.put_object(
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                StorageClass=STORAGE_CLASS,
            )
        except ClientError as e:
            self._raise("put_binary", key, e)
        logger.info(f"[S3] Wrote {bucket}/{key} ({len(data)} bytes)")

    # ── Reads ──────────────────────────────────────────────────────────────
    def get_binary(self, key: str) -> Optional[bytes]:
        bucket = self._require_bucket()
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                logger.debug(f"[S3] Not found: {key}")
                return None
            self._raise("get", key, e)
        return response["Body"].read()

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get_binary(key)
        if raw is None:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"[S3] {key} is not valid JSON: {e}")
            return None

    def head_exists(self, key: str) -> bool:
        bucket = self._require_bucket()
        try:
            self.client.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return False
            self._raise("head", key, e)

    def list_by_prefix(self, prefix: str, max_keys: Optional[int] = None) -> List[str]:
        """Keys under `prefix`. With `max_keys`, only the first page of that size is read."""
        bucket = self._require_bucket()
        keys: List[str] = []
        try:
            if max_keys:
                response = self.client.list_objects_v2(Bucket=bucket, Prefix=prefix, MaxKeys=max_keys)
                return [obj["Key"] for obj in response.get("Contents", [])]

            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except ClientError as e:
            self._raise("list", prefix, e)
        return keys

    def presigned_download_url(self, key: str, expiry_seconds: int = 3600,
                               suggested_filename: Optional[str] = None) -> str:
        bucket = self._require_bucket()
        filename = suggested_filename or storage_keys.basename(key)
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={
                    "Bucket": bucket,
                    "Key": key,
                    "ResponseContentDisposition": f'attachment; filename="{filename}"',
                },
                ExpiresIn=expiry_seconds,
            )
        except ClientError as e:
            self._raise("presign", key, e)

    # ── Searches ───────────────────────────────────────────────────────────
    def find_latest_video(self, today: date, days: int) -> Optional[Tuple[str, int]]:
        """
        Walk date folders newest-first and return (video_key, timestamp) for the
        newest .mp4 in the first non-empty day. Older days are only listed once
        every newer day has come back empty.
        """
        for offset in range(days):
            day = (today - timedelta(days=offset)).strftime("%Y-%m-%d")
            best_key, best_ts = None, -1
            for key in self.list_by_prefix(f"{day}/"):
                if not key.endswith(".mp4"):
                    continue
                ts = storage_keys.extract_timestamp(key)
                if ts is not None and ts > best_ts:
                    best_key, best_ts = key, ts
            if best_key:
                logger.info(f"[S3] Latest video in {day}: {best_key}")
                return best_key, best_ts
        logger.info(f"[S3] No videos found in the last {days} days")
        return None

    def find_event_by_id(self, event_id: str, today: date, days: int) -> Optional[str]:
        """Event JSON key for `event_id`, located by key prefix alone."""
        for offset in range(days):
            day = (today - timedelta(days=offset)).strftime("%Y-%m-%d")
            prefix = storage_keys.event_search_prefix(day, event_id)
            for key in self.list_by_prefix(prefix, max_keys=10):
                if key.endswith(".json"):
                    logger.info(f"[S3] Found event {event_id} at {key}")
                    return key
        logger.info(f"[S3] Event {event_id} not found in the last {days} days")
        return None
