import json
from typing import Optional

from chalice.test import Client


def make_request(chalice_client: Client, endpoint: str = '/', method: str = 'GET',
                 query: Optional[str] = None, json_body=None):
    """Request against the local app, json_body is sent as application/json """
    return chalice_client.http.request(
        method=method,
        path=f"{endpoint}?{query}" if query else f"{endpoint}",
        headers={'Content-Type': 'application/json', 'Host': 'test-domain.com'},
        body=json.dumps(json_body).encode('utf-8') if json_body is not None else b''
    )
