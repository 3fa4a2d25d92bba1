import logging
import threading
import time
from typing import Any, Dict, List, Optional

import jwt
import requests

from posture import config
from posture.assets import AssetSource
from posture.models import AssetNode
from posture.transform import ASSET_GROUPS, convert_tags
from gateway.proxy import build_target_url

logger = logging.getLogger('GatewayClient')

# Refresh a little before the token's own expiry
TOKEN_EXPIRY_LEEWAY_SECONDS = 30

GATEWAY_ASSET_TYPES = [
    'vpc', 'subnet', 'ec2', 'sg', 's3', 'iam_role', 'iam_policy', 'user', 'igw',
    'k8s_pod', 'k8s_node', 'k8s_deployment', 'k8s_service',
]

NODE_TYPES = {
    'ec2': 'EC2',
    'vpc': 'VPC',
    'subnet': 'Subnet',
    'sg': 'SG',
    's3': 'S3',
    'iam_role': 'IAMRole',
    'iam_policy': 'IAMPolicy',
    'user': 'IAMUser',
    'igw': 'IGW',
    'ni': 'NI',
    'k8s_pod': 'K8sPod',
    'k8s_deployment': 'K8sDeployment',
    'k8s_service': 'K8sService',
    'k8s_node': 'K8sNode',
}


class GatewayError(Exception):
    def __init__(self, message: str, status: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.status = status
        self.details = details


def _normalize_item(item: Any) -> Any:
    if not isinstance(item, dict):
        return item
    item = dict(item)
    item['tags'] = convert_tags(item.get('tags')) or {}
    metadata = dict(item.get('metadata') or {})
    metadata['tags'] = convert_tags(metadata.get('tags')) or {}
    item['metadata'] = metadata
    return item


class GatewayClient:
    """Bearer-token client for the data-access gateway."""

    def __init__(self, base_url: str = None, username: str = None, password: str = None,
                 http: requests.Session = None, verify: bool = None,
                 timeout: float = None, long_timeout: float = None):
        self.base_url = (base_url or config.GATEWAY_URL).rstrip('/')
        self.username = username or config.GATEWAY_USERNAME
        self.password = password or config.GATEWAY_PASSWORD
        self.http = http or requests.Session()
        self.verify = config.GATEWAY_VERIFY_TLS if verify is None else verify
        self.timeout = timeout or config.GATEWAY_TIMEOUT_SECONDS
        self.long_timeout = long_timeout or config.GATEWAY_LONG_TIMEOUT_SECONDS
        self.token: Optional[str] = None
        self._auth_lock = threading.Lock()

    def authenticate(self) -> str:
        with self._auth_lock:
            response = self.http.post(
                f"{self.base_url}/token",
                data={'username': self.username, 'password': self.password},
                headers={'Content-Type': 'application/x-www-form-urlencoded'},
                verify=self.verify,
                timeout=self.timeout,
            )
            if not response.ok:
                raise GatewayError("Authentication failed", status=response.status_code)
            self.token = response.json()['access_token']
            return self.token

    def token_expired(self) -> bool:
        if not self.token:
            return True
        try:
            claims = jwt.decode(self.token, options={"verify_signature": False})
        except jwt.PyJWTError:
            # Opaque token: rely on the gateway answering 401
            return False
        exp = claims.get('exp')
        return exp is not None and exp <= time.time() + TOKEN_EXPIRY_LEEWAY_SECONDS

    def _url(self, endpoint: str) -> str:
        path = endpoint[len('/api/'):] if endpoint.startswith('/api/') else endpoint.lstrip('/')
        return build_target_url(path, self.base_url)

    def request(self, endpoint: str, method: str = 'GET', payload: Any = None, _retried: bool = False) -> Any:
        if self.token_expired():
            self.authenticate()

        timeout = self.long_timeout if 'ai-detector/detect' in endpoint else self.timeout
        url = self._url(endpoint)
        logger.debug(f"{method} {url}")
        try:
            response = self.http.request(
                method,
                url,
                headers={'Authorization': f"Bearer {self.token}"},
                json=payload,
                verify=self.verify,
                timeout=timeout,
            )
        except requests.Timeout as e:
            raise GatewayError(
                f"Request timed out after {timeout:g} seconds. "
                "The operation may still be running in the background."
            ) from e

        if response.status_code == 401 and not _retried:
            self.token = None
            return self.request(endpoint, method, payload, _retried=True)

        if not response.ok:
            logger.error(f"API request failed: {response.status_code} {response.reason}")
            raise GatewayError(f"API request failed: {response.reason}", status=response.status_code,
                               details=response.text)

        data = response.json()
        if isinstance(data, list):
            return [_normalize_item(item) for item in data]
        return data

    def get_assets(self, asset_type: str) -> List[Dict]:
        try:
            data = self.request(f"/api/data-access/assets/type/{asset_type}")
        except Exception as e:
            logger.error(f"Error fetching {asset_type} assets: {str(e)}")
            return []
        if not isinstance(data, list):
            logger.error(f"Invalid response format for {asset_type}: {data}")
            return []
        return data

    def refresh_assets(self) -> Any:
        return self.request('/api/data-access/assets/refresh', method='POST')


class GatewayAssetSource(AssetSource):
    """Builds asset nodes from the gateway's data-access API instead of the data lake."""

    def __init__(self, client: GatewayClient = None, asset_types: List[str] = None):
        self.client = client or GatewayClient()
        self.asset_types = asset_types or GATEWAY_ASSET_TYPES

    def _to_node(self, asset: Dict, asset_type: str) -> AssetNode:
        metadata = dict(asset.get('metadata') or {})
        key = metadata.get('asset_type') or asset_type
        node_type = NODE_TYPES.get(key, key.upper())
        metadata['asset_type'] = key
        metadata['assetType'] = node_type
        metadata['tags'] = asset.get('tags') or metadata.get('tags') or {}
        if 'is_stale' in asset:
            metadata['is_stale'] = asset['is_stale']
        if node_type == 'EC2' and metadata.get('instance_id'):
            metadata.setdefault('instanceId', metadata['instance_id'])
        return AssetNode(
            id=str(asset['id']),
            name=str(asset.get('name') or asset['id']),
            type=node_type,
            group=ASSET_GROUPS.get(node_type, 'Other'),
            val=1,
            metadata=metadata,
        )

    def load_nodes(self) -> List[AssetNode]:
        nodes = []
        for asset_type in self.asset_types:
            for asset in self.client.get_assets(asset_type):
                if not isinstance(asset, dict) or not asset.get('id'):
                    logger.warning(f"Skipping {asset_type} asset without id")
                    continue
                nodes.append(self._to_node(asset, asset_type))
        return nodes

    def clear_cache(self) -> None:
        self.client.refresh_assets()
