import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import networkx as nx

from posture.models import FRAME_GROUP, AssetNode, FrameType, GraphData, GraphLink

logger = logging.getLogger('AssetGraph')

ADMIN_FRAME_ID = 'frame-administrative'
STORAGE_FRAME_ID = 'frame-storage'
VPC_MEMBER_TYPES = ('Subnet', 'SG', 'NI', 'EC2')
ADMIN_TYPES = ('IAMRole', 'IAMPolicy', 'IAMUser')
EKS_INSTANCE_TAG = 'alpha.eksctl.io/instance-id'


def vpc_frame_id(vpc: AssetNode) -> str:
    return f"frame-{vpc.id}"


def _frame(node_id: str, name: str, frame_type: FrameType, metadata: Optional[Dict] = None) -> AssetNode:
    metadata = dict(metadata or {})
    metadata['assetType'] = frame_type.value
    return AssetNode(id=node_id, name=name, type=frame_type.value, group=FRAME_GROUP, val=2, metadata=metadata)


def graph_metadata(nodes: List[AssetNode], links: List[GraphLink]) -> Dict:
    return {
        'totalNodes': len(nodes),
        'totalLinks': len(links),
        'assetTypes': list(dict.fromkeys(node.type for node in nodes)),
        'vpcCount': sum(1 for node in nodes if node.type == 'VPC'),
        'lastUpdate': datetime.now(timezone.utc).isoformat(),
        'frameTypes': [FrameType.ADMIN.value, FrameType.STORAGE.value, FrameType.VPC.value],
    }


class AssetGraphBuilder:
    """
    Groups asset nodes under synthetic frame nodes.

    Each VPC gets a frame that its subnets, security groups, network
    interfaces and instances link to; IAM entities hang off one
    administrative frame and buckets off one storage frame.
    """

    def __init__(self):
        self.graph = nx.DiGraph()

    def _add_link(self, source: str, target: str, value: int = 1) -> None:
        if source not in self.graph or target not in self.graph:
            logger.debug(f"Dropping link {source} -> {target}: endpoint missing")
            return
        if self.graph.has_edge(source, target):
            return
        self.graph.add_edge(source, target, value=value)

    def build(self, nodes: List[AssetNode]) -> GraphData:
        self.graph.clear()
        vpcs = [node for node in nodes if node.type == 'VPC']
        frames = [_frame(vpc_frame_id(vpc), f"VPC: {vpc.name}", FrameType.VPC, vpc.metadata) for vpc in vpcs]
        frames.append(_frame(ADMIN_FRAME_ID, 'Administrative', FrameType.ADMIN))
        frames.append(_frame(STORAGE_FRAME_ID, 'Storage', FrameType.STORAGE))

        all_nodes = []
        for node in list(nodes) + frames:
            if node.id in self.graph:
                logger.warning(f"Duplicate node id {node.id} ({node.type}), keeping the first")
                continue
            self.graph.add_node(node.id)
            all_nodes.append(node)

        for vpc in vpcs:
            frame_id = vpc_frame_id(vpc)
            self._add_link(vpc.id, frame_id, value=2)
            if not vpc.vpc_id:
                continue
            for node in nodes:
                if node.type in VPC_MEMBER_TYPES and node.vpc_id == vpc.vpc_id:
                    self._add_link(node.id, frame_id)

        for node in nodes:
            if node.type in ADMIN_TYPES:
                self._add_link(node.id, ADMIN_FRAME_ID)
            elif node.type == 'S3':
                self._add_link(node.id, STORAGE_FRAME_ID)

        match_kubernetes_nodes(nodes)

        links = [GraphLink(source=u, target=v, value=data['value']) for u, v, data in self.graph.edges(data=True)]
        logger.info(f"Graph built: {len(all_nodes)} nodes, {len(links)} links, {len(vpcs)} VPCs")
        return GraphData(nodes=all_nodes, links=links, metadata=graph_metadata(all_nodes, links))


def match_kubernetes_nodes(nodes: List[AssetNode]) -> int:
    """Annotate EC2 nodes that back an EKS worker with the worker's node name."""
    k8s_by_instance = {}
    for node in nodes:
        if node.type != 'K8sNode':
            continue
        instance_id = (node.metadata.get('tags') or {}).get(EKS_INSTANCE_TAG)
        if instance_id:
            k8s_by_instance[instance_id] = node

    matched = 0
    for node in nodes:
        if node.type != 'EC2':
            continue
        instance_id = node.metadata.get('instanceId') or node.metadata.get('instance_id') or node.id.split('_')[-1]
        k8s_node = k8s_by_instance.get(instance_id)
        if k8s_node:
            node.metadata['k8sNodeName'] = k8s_node.name
            matched += 1
    return matched


def build_graph(nodes: List[AssetNode]) -> GraphData:
    return AssetGraphBuilder().build(nodes)
