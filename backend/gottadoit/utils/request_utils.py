# /gottadoit/utils/request_utils.py
from fastapi import Request

def get_remote_address(request: Request) -> str:
    """
    Client address used as the rate limiting key. Honours the first hop of
    X-Forwarded-For when the service runs behind a proxy.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"
