"""
Minimal JSON-over-HTTP helper used by the geocoder and tide providers.
"""
import json
import urllib.parse
import urllib.request
from typing import Any, Dict, Optional

from .config import GEOCODER_USER_AGENT, MAX_RESPONSE_SIZE


def safe_read_response(response, max_size: int = MAX_RESPONSE_SIZE) -> bytes:
    """
    Safely read HTTP response with size limit to prevent memory exhaustion.

    Args:
        response: urllib response object
        max_size: Maximum allowed response size in bytes

    Returns:
        Response body as bytes

    Raises:
        ValueError: If response exceeds size limit
    """
    # Check Content-Length header if available
    content_length = response.headers.get('Content-Length')
    if content_length and int(content_length) > max_size:
        raise ValueError(f"Response too large: {content_length} bytes (max: {max_size})")

    # Read with size limit (read one extra byte to detect overflow)
    data = response.read(max_size + 1)
    if len(data) > max_size:
        raise ValueError(f"Response exceeded size limit of {max_size} bytes")

    return data


def get_json(
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 10.0,
) -> Any:
    """
    GET a URL and decode its JSON body.

    Raises whatever urllib raises (URLError, HTTPError, socket.timeout) and
    ValueError for oversized or non-JSON bodies.
    """
    if params:
        url = f"{url}?{urllib.parse.urlencode(params)}"

    request_headers = {'User-Agent': GEOCODER_USER_AGENT, 'Accept': 'application/json'}
    if headers:
        request_headers.update(headers)

    req = urllib.request.Request(url, headers=request_headers)
    with urllib.request.urlopen(req, timeout=timeout) as response:
        return json.loads(safe_read_response(response).decode())
