"""
Reshapes raw asset-table records into graph nodes.

Every asset table holds one cloud resource type. Records keep the column
names of the collector (``InstanceId``, ``VpcId``...) and come out as
``AssetNode`` objects whose metadata uses the dashboard's field names.
"""

import logging
from typing import Any, Dict, List, Optional

from posture.models import AssetNode

logger = logging.getLogger('AssetTransform')

ASSET_TYPE_ALIASES = {
    'User': 'IAMUser',
    'NetworkInterface': 'NI',
}

ASSET_GROUPS = {
    'EC2': 'Compute',
    'VPC': 'Networking',
    'Subnet': 'Networking',
    'IGW': 'Networking',
    'SG': 'Networking',
    'NI': 'Networking',
    'S3': 'Storage',
    'IAMRole': 'Administrative',
    'IAMPolicy': 'Administrative',
    'IAMUser': 'Administrative',
    'K8sPod': 'Kubernetes',
    'K8sNode': 'Kubernetes',
    'K8sDeployment': 'Kubernetes',
    'K8sService': 'Kubernetes',
}

NAME_FIELDS = {
    'EC2': 'InstanceId',
    'VPC': 'VpcId',
    'Subnet': 'SubnetId',
    'S3': 'Name',
    'IGW': 'InternetGatewayId',
    'SG': 'GroupId',
    'NI': 'NetworkInterfaceId',
    'IAMRole': 'RoleName',
    'IAMPolicy': 'PolicyName',
    'IAMUser': 'UserName',
    'K8sPod': 'Name',
    'K8sNode': 'Name',
    'K8sDeployment': 'Name',
    'K8sService': 'Name',
}

# (metadata key, record column) pairs, per asset type
METADATA_FIELDS = {
    'EC2': [
        ('instanceId', 'InstanceId'),
        ('instanceType', 'InstanceType'),
        ('state', 'State'),
        ('privateIpAddress', 'PrivateIpAddress'),
        ('publicIpAddress', 'PublicIpAddress'),
        ('launchTime', 'LaunchTime'),
        ('networkInterfaces', 'NetworkInterfaces'),
        ('architecture', 'Architecture'),
        ('platformDetails', 'PlatformDetails'),
        ('VpcId', 'VpcId'),
        ('subnetId', 'SubnetId'),
        ('IsAI', 'IsAI'),
        ('AIDetectionDetails', 'AIDetectionDetails'),
        ('isIgnored', 'IsIgnored'),
        ('isSandbox', 'IsSandbox'),
        ('hasFlowLogs', 'HasFlowLogs'),
    ],
    'VPC': [
        ('VpcId', 'VpcId'),
        ('cidrBlock', 'CidrBlock'),
    ],
    'Subnet': [
        ('subnetId', 'SubnetId'),
        ('subnetArn', 'SubnetArn'),
        ('VpcId', 'VpcId'),
        ('cidrBlock', 'CidrBlock'),
        ('availabilityZone', 'AvailabilityZone'),
        ('state', 'State'),
        ('ownerId', 'OwnerId'),
        ('ipv6CidrBlockAssociationSet', 'Ipv6CidrBlockAssociationSet'),
    ],
    'S3': [
        ('bucketName', 'Name'),
        ('creationDate', 'CreationDate'),
    ],
    'IGW': [
        ('internetGatewayId', 'InternetGatewayId'),
        ('VpcId', 'VpcId'),
    ],
    'SG': [
        ('groupId', 'GroupId'),
        ('VpcId', 'VpcId'),
        ('description', 'Description'),
    ],
    'NI': [
        ('networkInterfaceId', 'NetworkInterfaceId'),
        ('availabilityZone', 'AvailabilityZone'),
        ('privateIpAddress', 'PrivateIpAddress'),
        ('publicIp', 'PublicIp'),
        ('description', 'Description'),
        ('attachmentId', 'AttachmentId'),
        ('instanceId', 'InstanceId'),
        ('VpcId', 'VpcId'),
        ('subnetId', 'SubnetId'),
        ('groupId', 'GroupId'),
    ],
    'IAMRole': [
        ('roleId', 'RoleId'),
        ('roleName', 'RoleName'),
        ('assumeRolePolicyDocument', 'AssumeRolePolicyDocument'),
        ('attachedPolicyNames', 'AttachedPolicyNames'),
        ('inlinePolicyNames', 'InlinePolicyNames'),
    ],
    'IAMPolicy': [
        ('policyId', 'PolicyId'),
        ('policyName', 'PolicyName'),
        ('document', 'Document'),
        ('attachmentCount', 'AttachmentCount'),
        ('permissionsBoundaryUsageCount', 'PermissionsBoundaryUsageCount'),
    ],
    'IAMUser': [
        ('userId', 'UserId'),
        ('userName', 'UserName'),
        ('accessKeyIds', 'AccessKeyIds'),
        ('attachedPolicyNames', 'AttachedPolicyNames'),
        ('inlinePolicyNames', 'InlinePolicyNames'),
    ],
    'K8sPod': [
        ('namespace', 'Namespace'),
        ('nodeName', 'NodeName'),
        ('phase', 'Phase'),
        ('podIp', 'PodIP'),
    ],
    'K8sNode': [
        ('providerId', 'ProviderID'),
        ('instanceType', 'InstanceType'),
        ('availabilityZone', 'AvailabilityZone'),
    ],
    'K8sDeployment': [
        ('namespace', 'Namespace'),
        ('replicas', 'Replicas'),
        ('availableReplicas', 'AvailableReplicas'),
    ],
    'K8sService': [
        ('namespace', 'Namespace'),
        ('serviceType', 'Type'),
        ('clusterIp', 'ClusterIP'),
    ],
}


def canonical_asset_type(asset_type: str) -> str:
    return ASSET_TYPE_ALIASES.get(asset_type, asset_type)


def get_asset_group(asset_type: str) -> str:
    return ASSET_GROUPS.get(asset_type, asset_type)


def get_name_from_record(record: Dict, asset_type: str) -> str:
    field_name = NAME_FIELDS.get(asset_type)
    if field_name and record.get(field_name):
        return str(record[field_name])
    return str(record.get('UniqueId') or 'Unknown')


def convert_tags(tags: Any) -> Optional[Dict[str, str]]:
    """AWS style ``[{'Key': k, 'Value': v}]`` lists become plain dicts."""
    if tags is None:
        return None
    if isinstance(tags, dict):
        return tags
    converted = {}
    for tag in tags:
        if isinstance(tag, dict) and 'Key' in tag:
            converted[tag['Key']] = tag.get('Value')
    return converted


def _get_record_id(record: Dict, asset_type: str, name: str) -> str:
    prefix = asset_type.lower()
    for key in (f"{prefix}_id", f"{prefix}Id", 'id', 'UniqueId'):
        if record.get(key):
            return str(record[key])
    return name


def _build_metadata(record: Dict, asset_type: str) -> Dict[str, Any]:
    metadata = {'assetType': asset_type}
    fields = METADATA_FIELDS.get(asset_type)
    if fields is None:
        logger.warning(f"Unknown asset type: {asset_type}")
        return metadata
    for key, column in fields:
        if column in record:
            metadata[key] = record[column]
    if asset_type.startswith('K8s') and 'Name' in record:
        metadata['name'] = record['Name']
    raw_tags = record.get('Tags')
    if raw_tags is None:
        raw_tags = record.get('Labels')
    metadata['tags'] = convert_tags(raw_tags)
    return metadata


def transform_asset_data(asset_type: str, records: List[Dict]) -> List[AssetNode]:
    # ids keep the directory's own type name as their column prefix
    directory_type = asset_type
    asset_type = canonical_asset_type(asset_type)
    nodes = []
    for record in records:
        name = get_name_from_record(record, asset_type)
        nodes.append(AssetNode(
            id=_get_record_id(record, directory_type, name),
            name=name,
            type=asset_type,
            group=get_asset_group(asset_type),
            val=1,
            metadata=_build_metadata(record, asset_type),
        ))
    return nodes
