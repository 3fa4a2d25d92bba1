import io
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import boto3
import numpy as np
import pandas as pd
from botocore.exceptions import ClientError
from cachetools import TTLCache

from posture import config
from posture.models import AssetNode, AssetTable
from posture.transform import transform_asset_data

logger = logging.getLogger('AssetSource')


class AssetReadError(Exception):
    pass


class AssetSource(ABC):
    @abstractmethod
    def load_nodes(self) -> List[AssetNode]:
        pass

    @abstractmethod
    def clear_cache(self) -> None:
        pass


def to_native(value: Any) -> Any:
    """Convert a decoded Parquet cell into plain JSON-compatible Python."""
    if value is None or value is pd.NaT or value is pd.NA:
        return None
    if isinstance(value, dict):
        return {k: to_native(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, np.ndarray)):
        return [to_native(v) for v in value]
    if isinstance(value, np.datetime64):
        return None if np.isnat(value) else pd.Timestamp(value).isoformat()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return value


def decode_parquet(body: bytes) -> List[Dict[str, Any]]:
    df = pd.read_parquet(io.BytesIO(body), engine='pyarrow')
    records = df.to_dict(orient='records')
    return [{str(k): to_native(v) for k, v in record.items()} for record in records]


class S3AssetSource(AssetSource):
    """Reads the asset directory and asset tables from the data lake bucket."""

    def __init__(self, bucket: str = None, directory_key: str = None,
                 session: boto3.Session = None, s3_client=None,
                 ttl: float = None, maxsize: int = None,
                 timer: Callable[[], float] = time.monotonic):
        self.bucket = bucket or config.ASSET_BUCKET
        self.directory_key = directory_key or config.ASSET_DIRECTORY_KEY
        if s3_client is not None:
            self.s3_client = s3_client
        else:
            session = session or boto3.Session(region_name=config.AWS_REGION)
            self.s3_client = session.client('s3')
        self._cache = TTLCache(
            maxsize=maxsize or config.ASSET_CACHE_MAXSIZE,
            ttl=config.ASSET_CACHE_TTL_SECONDS if ttl is None else ttl,
            timer=timer,
        )
        self._lock = threading.Lock()

    def _describe_s3_error(self, error: ClientError, key: str) -> str:
        code = error.response.get('Error', {}).get('Code', '')
        if code in ('NoSuchKey', '404'):
            return f"File not found: {key}"
        if code in ('AccessDenied', '403'):
            return f"Access denied to file: {key}"
        if code in ('InvalidBucketName', 'NoSuchBucket'):
            return f"Invalid bucket name: {self.bucket}"
        message = error.response.get('Error', {}).get('Message') or str(error)
        return f"S3 error: {message}"

    def read_parquet_file(self, key: str) -> List[Dict[str, Any]]:
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            obj = self.s3_client.get_object(Bucket=self.bucket, Key=key)
            body = obj['Body'].read()
        except ClientError as e:
            raise AssetReadError(self._describe_s3_error(e, key)) from e

        try:
            records = decode_parquet(body)
        except Exception as e:
            raise AssetReadError(f"Failed to parse {key}: {str(e)}") from e

        with self._lock:
            self._cache[key] = records
        logger.debug(f"Read {len(records)} records from s3://{self.bucket}/{key}")
        return records

    def get_asset_directory(self) -> List[AssetTable]:
        try:
            records = self.read_parquet_file(self.directory_key)
        except Exception as e:
            logger.error(f"Error reading asset directory: {str(e)}")
            raise AssetReadError("Failed to read asset directory") from e

        tables = []
        for record in records:
            if not record.get('AssetType') or not record.get('AssetTable'):
                logger.warning(f"Skipping incomplete directory entry: {record}")
                continue
            tables.append(AssetTable(asset_type=record['AssetType'], table=record['AssetTable']))
        return tables

    def load_nodes(self) -> List[AssetNode]:
        nodes = []
        for table in self.get_asset_directory():
            try:
                records = self.read_parquet_file(table.table)
                nodes.extend(transform_asset_data(table.asset_type, records))
            except Exception as e:
                logger.error(f"Error processing asset type {table.asset_type}: {str(e)}")
        return nodes

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def cached_keys(self) -> List[str]:
        with self._lock:
            return list(self._cache.keys())
