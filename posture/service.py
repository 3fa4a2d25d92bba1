import logging
from typing import Optional

from posture import config
from posture.assets import AssetSource, S3AssetSource
from posture.graph import AssetGraphBuilder
from posture.models import AssetNode, GraphData, GraphLink
from posture.overlay import GraphOverlay

logger = logging.getLogger('AssetGraphService')


class AssetGraphService:
    def __init__(self, source: AssetSource, overlay: Optional[GraphOverlay] = None):
        self.source = source
        self.overlay = overlay or GraphOverlay()

    def get_graph_data(self) -> GraphData:
        try:
            nodes = self.source.load_nodes()
            graph = AssetGraphBuilder().build(nodes)
            return self.overlay.apply(graph)
        except Exception as e:
            logger.error(f"Error getting graph data: {str(e)}")
            raise

    def clear_cache(self) -> None:
        self.source.clear_cache()

    def refresh(self) -> GraphData:
        self.clear_cache()
        return self.get_graph_data()

    def add_node(self, node: AssetNode) -> GraphData:
        self.overlay.add_node(node, self.get_graph_data())
        return self.get_graph_data()

    def add_link(self, link: GraphLink) -> GraphData:
        self.overlay.add_link(link, self.get_graph_data())
        return self.get_graph_data()

    def remove_node(self, node_id: str) -> GraphData:
        self.overlay.remove_node(node_id, self.get_graph_data())
        return self.get_graph_data()

    def remove_link(self, source: str, target: str) -> GraphData:
        self.overlay.remove_link(source, target, self.get_graph_data())
        return self.get_graph_data()

    def replace(self, nodes, links) -> GraphData:
        self.overlay.replace(nodes, links)
        return self.get_graph_data()

    def set_ignored(self, instance_id: str, ignore: bool) -> bool:
        self.overlay.set_ignored(instance_id, ignore)
        return self.overlay.is_ignored(instance_id)


def create_asset_source(source_name: str = None) -> AssetSource:
    source_name = (source_name or config.GRAPH_SOURCE).lower()
    if source_name == 's3':
        return S3AssetSource()
    if source_name == 'gateway':
        from gateway.client import GatewayAssetSource
        return GatewayAssetSource()
    raise ValueError(f"Unknown graph source: {source_name}")
