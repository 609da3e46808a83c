"""State document stored as a single S3 object."""

from __future__ import annotations

import json
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..config import StateConfig
from ..exceptions import StateStoreUnavailable
from .store import SerializedStateStore

logger = logging.getLogger(__name__)


class S3StateStore(SerializedStateStore):
    """Reads and rewrites ``s3://bucket/key``; a missing object is an empty state."""

    def __init__(self, config: StateConfig):
        super().__init__()
        self._bucket = config.bucket
        self._key = config.key

        session_kwargs: dict[str, Any] = {}
        if config.region:
            session_kwargs["region_name"] = config.region
        if config.credential_profile:
            session_kwargs["profile_name"] = config.credential_profile

        try:
            session = boto3.Session(**session_kwargs)
            self._s3 = session.client("s3")
        except BotoCoreError as exc:
            raise StateStoreUnavailable(f"Cannot open S3 state backend: {exc}") from exc

    def _read_document(self) -> dict | None:
        try:
            response = self._s3.get_object(Bucket=self._bucket, Key=self._key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in ("NoSuchKey", "404"):
                logger.info("No state object at s3://%s/%s, starting empty", self._bucket, self._key)
                return None
            raise StateStoreUnavailable(f"Cannot read s3://{self._bucket}/{self._key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StateStoreUnavailable(f"Cannot read s3://{self._bucket}/{self._key}: {exc}") from exc

        try:
            return json.loads(response["Body"].read())
        except (ValueError, KeyError) as exc:
            raise StateStoreUnavailable(f"State object s3://{self._bucket}/{self._key} is not valid JSON") from exc

    def _write_document(self, body: str) -> None:
        try:
            self._s3.put_object(
                Bucket=self._bucket,
                Key=self._key,
                Body=body.encode(),
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as exc:
            raise StateStoreUnavailable(f"Cannot write s3://{self._bucket}/{self._key}: {exc}") from exc
