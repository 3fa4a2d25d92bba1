from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class FrameType(Enum):
    ADMIN = "ADMIN_FRAME"
    STORAGE = "STORAGE_FRAME"
    VPC = "VPC_FRAME"


FRAME_GROUP = "FRAME"


@dataclass
class AssetTable:
    asset_type: str
    table: str


@dataclass
class AssetNode:
    id: str
    name: str
    type: str
    group: str
    val: int = 1
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def vpc_id(self):
        return self.metadata.get('VpcId') or self.metadata.get('vpc_id')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'group': self.group,
            'val': self.val,
            'metadata': self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssetNode":
        metadata = dict(data.get('metadata') or {})
        metadata.setdefault('assetType', data['type'])
        return cls(
            id=data['id'],
            name=data.get('name') or data['id'],
            type=data['type'],
            group=data.get('group') or data['type'],
            val=data.get('val', 1),
            metadata=metadata,
        )


@dataclass
class GraphLink:
    source: str
    target: str
    value: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {'source': self.source, 'target': self.target, 'value': self.value}


@dataclass
class GraphData:
    nodes: List[AssetNode]
    links: List[GraphLink]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def node_ids(self) -> set:
        return {node.id for node in self.nodes}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nodes': [node.to_dict() for node in self.nodes],
            'links': [link.to_dict() for link in self.links],
            'metadata': self.metadata,
        }
