"""
Manual edits layered over the graph built from the asset tables.

The asset tables are read-only, so nodes and links added or removed through
the API are kept here and re-applied every time the graph is rebuilt.
"""

import logging
import threading
from typing import Dict, List, Set, Tuple

from posture.graph import graph_metadata
from posture.models import AssetNode, GraphData, GraphLink

logger = logging.getLogger('GraphOverlay')


class GraphEditError(Exception):
    pass


class GraphOverlay:
    def __init__(self):
        self._lock = threading.Lock()
        self.nodes: Dict[str, AssetNode] = {}
        self.links: Dict[Tuple[str, str], GraphLink] = {}
        self.removed_nodes: Set[str] = set()
        self.removed_links: Set[Tuple[str, str]] = set()
        self.ignored: Dict[str, bool] = {}

    def add_node(self, node: AssetNode, graph: GraphData) -> None:
        with self._lock:
            if node.id in graph.node_ids() and node.id not in self.nodes:
                raise GraphEditError(f"Node {node.id} already exists")
            self.removed_nodes.discard(node.id)
            self.nodes[node.id] = node

    def add_link(self, link: GraphLink, graph: GraphData) -> None:
        node_ids = graph.node_ids()
        missing = [end for end in (link.source, link.target) if end not in node_ids]
        if missing:
            raise GraphEditError(f"Unknown link endpoint(s): {', '.join(missing)}")
        with self._lock:
            key = (link.source, link.target)
            self.removed_links.discard(key)
            self.links[key] = link

    def remove_node(self, node_id: str, graph: GraphData) -> None:
        if node_id not in graph.node_ids():
            raise GraphEditError(f"Node {node_id} not found")
        with self._lock:
            self.nodes.pop(node_id, None)
            self.removed_nodes.add(node_id)
            for key in [k for k in self.links if node_id in k]:
                del self.links[key]

    def remove_link(self, source: str, target: str, graph: GraphData) -> None:
        key = (source, target)
        if not any((link.source, link.target) == key for link in graph.links):
            raise GraphEditError(f"Link {source} -> {target} not found")
        with self._lock:
            self.links.pop(key, None)
            self.removed_links.add(key)

    def replace(self, nodes: List[AssetNode], links: List[GraphLink]) -> None:
        with self._lock:
            self.nodes = {node.id: node for node in nodes}
            self.links = {(link.source, link.target): link for link in links}
            self.removed_nodes.clear()
            self.removed_links.clear()

    def set_ignored(self, instance_id: str, ignore: bool) -> None:
        with self._lock:
            self.ignored[instance_id] = ignore

    def is_ignored(self, instance_id: str) -> bool:
        return self.ignored.get(instance_id, False)

    def apply(self, graph: GraphData) -> GraphData:
        with self._lock:
            nodes = [node for node in graph.nodes if node.id not in self.removed_nodes and node.id not in self.nodes]
            nodes.extend(self.nodes.values())
            node_ids = {node.id for node in nodes}

            links = {}
            for link in list(graph.links) + list(self.links.values()):
                key = (link.source, link.target)
                if key in self.removed_links:
                    continue
                if link.source not in node_ids or link.target not in node_ids:
                    continue
                links[key] = link

            for node in nodes:
                instance_id = node.metadata.get('instanceId')
                if node.type == 'EC2' and instance_id in self.ignored:
                    node.metadata['isIgnored'] = self.ignored[instance_id]

        metadata = dict(graph.metadata)
        fresh = graph_metadata(nodes, list(links.values()))
        for key in ('totalNodes', 'totalLinks', 'assetTypes', 'vpcCount'):
            metadata[key] = fresh[key]
        return GraphData(nodes=nodes, links=list(links.values()), metadata=metadata)
