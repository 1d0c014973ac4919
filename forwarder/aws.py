"""boto3 implementations of the retrieval and secret capabilities."""

import logging
from datetime import datetime
from typing import Any, Optional, Sequence, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import RetrievalError
from .interfaces import MetricDataPage, MetricDataRow
from .models import Window
from .query import CompiledQuery

logger = logging.getLogger("forwarder.aws")


def _to_unix(t: Union[datetime, int, float]) -> int:
    if isinstance(t, datetime):
        return int(t.timestamp())
    return int(t)


class CloudWatchRetrieval:
    """GetMetricData, one page per call."""

    def __init__(self, client: Any = None, region_name: Optional[str] = None):
        self.client = client or boto3.client("cloudwatch", region_name=region_name)

    def get_metric_data(
        self,
        window: Window,
        queries: Sequence[CompiledQuery],
        next_token: Optional[str] = None,
    ) -> MetricDataPage:
        params = {
            "MetricDataQueries": [q.to_api() for q in queries],
            "StartTime": window.start_time,
            "EndTime": window.end_time,
            "ScanBy": "TimestampAscending",
        }
        if next_token:
            params["NextToken"] = next_token

        try:
            resp = self.client.get_metric_data(**params)
        except (BotoCoreError, ClientError) as e:
            raise RetrievalError(f"GetMetricData failed: {e}") from e

        for message in resp.get("Messages", []):
            logger.warning("GetMetricData: %s: %s", message.get("Code"), message.get("Value"))

        rows = []
        for result in resp.get("MetricDataResults", []):
            if result.get("StatusCode") not in (None, "Complete", "PartialData"):
                logger.warning("GetMetricData: %s returned status %s", result.get("Label"), result.get("StatusCode"))
            rows.append(MetricDataRow(
                label=result.get("Label", ""),
                timestamps=[_to_unix(t) for t in result.get("Timestamps", [])],
                values=[float(v) for v in result.get("Values", [])],
            ))
        return MetricDataPage(rows=rows, next_token=resp.get("NextToken"))


class SSMParameterStore:
    def __init__(self, client: Any = None, region_name: Optional[str] = None):
        self.client = client or boto3.client("ssm", region_name=region_name)

    def get_parameter(self, name: str, with_decryption: bool = False) -> str:
        resp = self.client.get_parameter(Name=name, WithDecryption=with_decryption)
        return resp["Parameter"]["Value"]


class KMSDecrypter:
    def __init__(self, client: Any = None, region_name: Optional[str] = None):
        self.client = client or boto3.client("kms", region_name=region_name)

    def decrypt(self, blob: bytes) -> bytes:
        resp = self.client.decrypt(CiphertextBlob=blob)
        return resp["Plaintext"]
