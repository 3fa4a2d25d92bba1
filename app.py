import logging
import threading
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from posture import config
from posture.models import AssetNode, GraphLink
from posture.overlay import GraphEditError
from posture.service import AssetGraphService, create_asset_source
from fortify.relocation import EC2Relocator, RelocationInProgress
from gateway.proxy import forward_request

logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger('FortifAI')

app = FastAPI(title="FortifAI Posture API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


class NodeRequest(BaseModel):
    id: str
    type: str
    name: Optional[str] = None
    group: Optional[str] = None
    val: int = 1
    metadata: Dict[str, Any] = Field(default_factory=dict)


class LinkRequest(BaseModel):
    source: str
    target: str
    value: int = 1


class GraphRequest(BaseModel):
    nodes: List[NodeRequest] = Field(default_factory=list)
    links: List[LinkRequest] = Field(default_factory=list)


class FortifaiRequest(BaseModel):
    instanceId: Optional[str] = None
    destinationVpcId: Optional[str] = None


class IgnoreRequest(BaseModel):
    instanceId: Optional[str] = None
    # must be a JSON boolean
    ignore: Any = None


def error_response(status_code: int, error: str, details: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'error': error, 'details': details})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return error_response(400, 'Invalid parameters', str(exc.errors()))


_graph_service: Optional[AssetGraphService] = None
_graph_service_lock = threading.Lock()


def get_graph_service() -> AssetGraphService:
    global _graph_service
    with _graph_service_lock:
        if _graph_service is None:
            _graph_service = AssetGraphService(create_asset_source())
        return _graph_service


def get_relocator() -> EC2Relocator:
    return EC2Relocator()


def _to_node(node: NodeRequest) -> AssetNode:
    return AssetNode.from_dict(node.model_dump())


def _to_link(link: LinkRequest) -> GraphLink:
    return GraphLink(source=link.source, target=link.target, value=link.value)


@app.get("/api/health")
def health():
    return {'status': 'ok', 'graphSource': config.GRAPH_SOURCE}


@app.get("/api/graph")
def get_graph(service: AssetGraphService = Depends(get_graph_service)):
    try:
        graph = service.get_graph_data()
        logger.info("Serving graph data")
        return graph.to_dict()
    except Exception as e:
        logger.error(f"Error fetching graph data: {str(e)}")
        return error_response(500, 'Failed to fetch graph data', str(e))


@app.post("/api/graph/refresh")
def refresh_graph(service: AssetGraphService = Depends(get_graph_service)):
    try:
        graph = service.refresh()
        return {'message': 'Cache cleared and data refreshed', 'data': graph.to_dict()}
    except Exception as e:
        logger.error(f"Error refreshing graph data: {str(e)}")
        return error_response(500, 'Failed to refresh graph data', str(e))


@app.put("/api/graph")
def update_graph(request: Optional[GraphRequest] = None, service: AssetGraphService = Depends(get_graph_service)):
    try:
        if request is None:
            return service.get_graph_data().to_dict()
        graph = service.replace([_to_node(n) for n in request.nodes], [_to_link(l) for l in request.links])
        return graph.to_dict()
    except Exception as e:
        logger.error(f"Error updating graph data: {str(e)}")
        return error_response(500, 'Failed to update graph data', str(e))


@app.post("/api/graph/nodes")
def add_node(request: NodeRequest, service: AssetGraphService = Depends(get_graph_service)):
    try:
        return service.add_node(_to_node(request)).to_dict()
    except GraphEditError as e:
        return error_response(400, 'Failed to add node', str(e))
    except Exception as e:
        logger.error(f"Error adding node: {str(e)}")
        return error_response(500, 'Failed to add node', str(e))


@app.post("/api/graph/links")
def add_link(request: LinkRequest, service: AssetGraphService = Depends(get_graph_service)):
    try:
        return service.add_link(_to_link(request)).to_dict()
    except GraphEditError as e:
        return error_response(400, 'Failed to add link', str(e))
    except Exception as e:
        logger.error(f"Error adding link: {str(e)}")
        return error_response(500, 'Failed to add link', str(e))


@app.delete("/api/graph/nodes/{node_id}")
def remove_node(node_id: str, service: AssetGraphService = Depends(get_graph_service)):
    try:
        return service.remove_node(node_id).to_dict()
    except GraphEditError as e:
        return error_response(400, 'Failed to remove node', str(e))
    except Exception as e:
        logger.error(f"Error removing node: {str(e)}")
        return error_response(500, 'Failed to remove node', str(e))


@app.delete("/api/graph/links")
def remove_link(source: Optional[str] = None, target: Optional[str] = None,
                service: AssetGraphService = Depends(get_graph_service)):
    if not source or not target:
        return error_response(400, 'Failed to remove link', 'Please provide source and target query parameters')
    try:
        return service.remove_link(source, target).to_dict()
    except GraphEditError as e:
        return error_response(400, 'Failed to remove link', str(e))
    except Exception as e:
        logger.error(f"Error removing link: {str(e)}")
        return error_response(500, 'Failed to remove link', str(e))


@app.post("/api/fortifai")
def fortifai_action(request: Optional[FortifaiRequest] = None, relocator: EC2Relocator = Depends(get_relocator)):
    request = request or FortifaiRequest()
    logger.info(f"Received FortifAI request for instance: {request.instanceId}")
    if not request.instanceId:
        logger.error("No instance ID provided in request")
        return error_response(400, 'Instance ID is required', 'Please provide an instanceId in the request body')

    destination_vpc_id = request.destinationVpcId or config.SANDBOX_VPC_ID
    logger.info(f"Attempting to relocate instance {request.instanceId} to VPC {destination_vpc_id}")
    try:
        result = relocator.relocate(request.instanceId, destination_vpc_id)
    except RelocationInProgress as e:
        return error_response(409, 'Relocation already in progress', str(e))
    except Exception as e:
        logger.error(f"Error processing FortifAI action: {str(e)}")
        return error_response(500, 'Failed to process FortifAI action', str(e))

    logger.info(f"Relocation successful: {result.to_dict()}")
    return {'success': True, 'message': result.message, 'data': result.to_dict()}


@app.post("/api/fortifai/ignore")
def fortifai_ignore(request: Optional[IgnoreRequest] = None, service: AssetGraphService = Depends(get_graph_service)):
    request = request or IgnoreRequest()
    logger.info(f"Received ignore request for instance: {request.instanceId} ignore: {request.ignore}")
    if not request.instanceId or not isinstance(request.ignore, bool):
        logger.error("Invalid request parameters")
        return error_response(400, 'Invalid parameters',
                              'Please provide instanceId and ignore (boolean) in the request body')
    try:
        ignored = service.set_ignored(request.instanceId, request.ignore)
    except Exception as e:
        logger.error(f"Error updating ignore status: {str(e)}")
        return error_response(500, 'Failed to update ignore status', str(e))

    return {
        'success': True,
        'message': f"Instance {request.instanceId} {'ignored' if request.ignore else 'unignored'} successfully",
        'data': {'instanceId': request.instanceId, 'isIgnored': ignored},
    }


@app.api_route("/api/proxy/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def proxy(path: str, request: Request):
    body = await request.body()
    try:
        status_code, data = await run_in_threadpool(
            forward_request, request.method, path, request.headers, body, dict(request.query_params)
        )
    except Exception as e:
        logger.error(f"Proxy error: {str(e)}")
        return JSONResponse(status_code=500, content={'error': 'Internal Server Error'})
    return JSONResponse(status_code=status_code, content=data)


if __name__ == "__main__":
    # Run API on 0.0.0.0:PORT (3001 unless configured).
    uvicorn.run("app:app", host="0.0.0.0", port=config.PORT)
