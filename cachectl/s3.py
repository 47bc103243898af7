from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
ACCESS_DENIED_CODES = {"AccessDenied", "AccessDeniedException", "403"}

METRIC_NAMESPACE = "AWS/S3"
METRIC_NAME = "NumberOfObjects"
METRIC_STORAGE_TYPE = "AllStorageTypes"
METRIC_PERIOD_SECONDS = 86400


@dataclass(frozen=True)
class ObjectMeta:
    content_type: Optional[str]
    cache_control: Optional[str]


class ObjectNotFound(Exception):
    def __init__(self, bucket: str, key: str) -> None:
        super().__init__(f"s3://{bucket}/{key} not found")
        self.bucket = bucket
        self.key = key


def error_code(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        return str(exc.response.get("Error", {}).get("Code", ""))
    return ""


def is_access_denied(exc: Exception) -> bool:
    return error_code(exc) in ACCESS_DENIED_CODES


class S3Service:
    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        max_connections: int = 10,
    ) -> None:
        self.profile = None if profile == "default" else profile
        self._region = region
        self._config = Config(
            max_pool_connections=max(10, int(max_connections)),
            retries={"mode": "adaptive", "max_attempts": 5},
        )
        self._session = None
        self._clients: dict[str, object] = {}
        self._assumed_clients: dict[str, object] = {}

    def _boto_session(self):
        if self._session is None:
            if self.profile is None:
                self._session = boto3.session.Session()
            else:
                self._session = boto3.session.Session(profile_name=self.profile)
        return self._session

    def _client(self, service: str):
        if service in self._clients:
            return self._clients[service]
        session = self._boto_session()
        if self._region:
            client = session.client(
                service, region_name=self._region, config=self._config
            )
        else:
            client = session.client(service, config=self._config)
        self._clients[service] = client
        return client

    def connect(self) -> None:
        self._client("s3")

    def head_metadata(self, bucket: str, key: str) -> ObjectMeta:
        client = self._client("s3")
        try:
            response = client.head_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            if error_code(exc) in NOT_FOUND_CODES:
                raise ObjectNotFound(bucket, key) from exc
            raise
        return ObjectMeta(
            content_type=response.get("ContentType") or None,
            cache_control=response.get("CacheControl") or None,
        )

    def iter_key_pages(
        self,
        bucket: str,
        page_size: int = 1000,
        start_after: Optional[str] = None,
    ) -> Iterator[list[str]]:
        client = self._client("s3")
        continuation: Optional[str] = None
        while True:
            kwargs = {
                "Bucket": bucket,
                "MaxKeys": page_size,
            }
            if continuation:
                kwargs["ContinuationToken"] = continuation
            elif start_after:
                kwargs["StartAfter"] = start_after
            response = client.list_objects_v2(**kwargs)
            keys: list[str] = []
            for entry in response.get("Contents", []):
                key = entry.get("Key")
                if key:
                    keys.append(key)
            yield keys
            if response.get("IsTruncated"):
                continuation = response.get("NextContinuationToken")
            else:
                break

    def copy_with_metadata_replace(
        self,
        source_bucket: str,
        source_key: str,
        target_bucket: str,
        target_key: str,
        content_type: str,
        cache_control: str,
    ) -> None:
        # REPLACE drops every other piece of user metadata on the target.
        client = self._client("s3")
        client.copy_object(
            Bucket=target_bucket,
            Key=target_key,
            CopySource={"Bucket": source_bucket, "Key": source_key},
            CacheControl=cache_control,
            ContentType=content_type,
            MetadataDirective="REPLACE",
        )

    def _assumed_client(self, service: str, role_arn: str):
        cache_key = f"{role_arn}|{service}"
        if cache_key in self._assumed_clients:
            return self._assumed_clients[cache_key]
        response = self._client("sts").assume_role(
            RoleArn=role_arn,
            RoleSessionName="cachectl",
        )
        credentials = response["Credentials"]
        kwargs = {
            "aws_access_key_id": credentials["AccessKeyId"],
            "aws_secret_access_key": credentials["SecretAccessKey"],
            "aws_session_token": credentials["SessionToken"],
            "config": self._config,
        }
        if self._region:
            kwargs["region_name"] = self._region
        client = boto3.session.Session().client(service, **kwargs)
        self._assumed_clients[cache_key] = client
        return client

    def metric_maximum(
        self,
        bucket: str,
        since: datetime,
        until: datetime,
        role_arn: Optional[str] = None,
    ) -> Optional[int]:
        if role_arn:
            client = self._assumed_client("cloudwatch", role_arn)
        else:
            client = self._client("cloudwatch")
        response = client.get_metric_statistics(
            Namespace=METRIC_NAMESPACE,
            MetricName=METRIC_NAME,
            Dimensions=[
                {"Name": "BucketName", "Value": bucket},
                {"Name": "StorageType", "Value": METRIC_STORAGE_TYPE},
            ],
            StartTime=since,
            EndTime=until,
            Period=METRIC_PERIOD_SECONDS,
            Statistics=["Maximum"],
        )
        values = [
            point["Maximum"]
            for point in response.get("Datapoints", [])
            if isinstance(point, dict) and point.get("Maximum") is not None
        ]
        if not values:
            return None
        return int(max(values))
