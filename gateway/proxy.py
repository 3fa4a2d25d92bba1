import logging
from typing import Any, Dict, Mapping, Optional, Tuple

import requests

from posture import config

logger = logging.getLogger('GatewayProxy')

BODYLESS_METHODS = ('GET', 'HEAD')


def build_target_url(path: str, base_url: str = None) -> str:
    base_url = (base_url or config.GATEWAY_URL).rstrip('/')
    clean_path = path.strip('/')
    # The token endpoint lives outside the /api prefix
    if clean_path == 'token':
        return f"{base_url}/token"
    return f"{base_url}/api/{clean_path}"


def forward_request(method: str, path: str, headers: Mapping[str, str], body: Optional[bytes] = None,
                    params: Optional[Dict[str, str]] = None, http=None, base_url: str = None,
                    verify: bool = None, timeout: float = None) -> Tuple[int, Any]:
    """
    Forward one call to the external gateway and return ``(status, json body)``.

    Only the content type and the bearer token are passed on. A response
    body that is not JSON comes back as ``None``.
    """
    method = method.upper()
    headers = {k.lower(): v for k, v in headers.items()}
    url = build_target_url(path, base_url)

    out_headers = {}
    if method not in BODYLESS_METHODS:
        out_headers['Content-Type'] = headers.get('content-type') or 'application/json'
    if headers.get('authorization'):
        out_headers['Authorization'] = headers['authorization']

    logger.info(f"Proxying request to: {url}")
    http = http or requests
    response = http.request(
        method,
        url,
        headers=out_headers,
        params=params or None,
        data=body if method not in BODYLESS_METHODS and body else None,
        verify=config.GATEWAY_VERIFY_TLS if verify is None else verify,
        timeout=config.GATEWAY_TIMEOUT_SECONDS if timeout is None else timeout,
    )

    try:
        data = response.json()
    except ValueError:
        data = None

    if not response.ok:
        logger.error(f"Proxy error response: {response.status_code} {response.reason} {data}")
        return response.status_code, data
    return 200, data
