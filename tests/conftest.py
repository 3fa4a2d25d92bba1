"""
Shared fixtures. Nothing here talks to AWS or the gateway: S3 and EC2 are
replaced by mocks, Parquet tables are written in memory with pandas.
"""

import io
from unittest.mock import MagicMock

import pandas as pd
import pytest
from botocore.exceptions import ClientError

from posture.assets import AssetSource
from posture.models import AssetNode


@pytest.fixture
def parquet_bytes():
    def _build(records):
        buf = io.BytesIO()
        pd.DataFrame(records).to_parquet(buf, engine='pyarrow', index=False)
        return buf.getvalue()
    return _build


@pytest.fixture
def fake_s3():
    """MagicMock S3 client serving an in-memory ``{key: bytes}`` bucket."""
    def _build(objects):
        client = MagicMock()

        def get_object(Bucket, Key):
            if Key not in objects:
                raise ClientError(
                    {'Error': {'Code': 'NoSuchKey', 'Message': 'The specified key does not exist.'}},
                    'GetObject',
                )
            return {'Body': io.BytesIO(objects[Key])}

        client.get_object.side_effect = get_object
        return client
    return _build


class StaticAssetSource(AssetSource):
    def __init__(self, nodes=None, error=None):
        self.nodes = nodes or []
        self.error = error
        self.cleared = 0

    def load_nodes(self):
        if self.error:
            raise self.error
        # fresh copies, like a real rebuild
        return [AssetNode.from_dict(node.to_dict()) for node in self.nodes]

    def clear_cache(self):
        self.cleared += 1


@pytest.fixture
def sample_nodes():
    return [
        AssetNode(id='vpc-1', name='vpc-1', type='VPC', group='Networking',
                  metadata={'assetType': 'VPC', 'VpcId': 'vpc-1', 'cidrBlock': '10.0.0.0/16'}),
        AssetNode(id='subnet-a', name='subnet-a', type='Subnet', group='Networking',
                  metadata={'assetType': 'Subnet', 'subnetId': 'subnet-a', 'VpcId': 'vpc-1'}),
        AssetNode(id='subnet-b', name='subnet-b', type='Subnet', group='Networking',
                  metadata={'assetType': 'Subnet', 'subnetId': 'subnet-b', 'VpcId': 'vpc-2'}),
        AssetNode(id='acct_i-1', name='i-1', type='EC2', group='Compute',
                  metadata={'assetType': 'EC2', 'instanceId': 'i-1', 'VpcId': 'vpc-1'}),
        AssetNode(id='eni-1', name='eni-1', type='NI', group='Networking',
                  metadata={'assetType': 'NI', 'networkInterfaceId': 'eni-1', 'VpcId': 'vpc-1'}),
        AssetNode(id='sg-1', name='sg-1', type='SG', group='Networking',
                  metadata={'assetType': 'SG', 'groupId': 'sg-1', 'VpcId': 'vpc-1'}),
        AssetNode(id='role-1', name='web-role', type='IAMRole', group='Administrative',
                  metadata={'assetType': 'IAMRole', 'roleName': 'web-role'}),
        AssetNode(id='bucket-1', name='logs', type='S3', group='Storage',
                  metadata={'assetType': 'S3', 'bucketName': 'logs'}),
    ]


@pytest.fixture
def static_source(sample_nodes):
    return StaticAssetSource(sample_nodes)
