"""Client attribution helpers shared by the middleware chain."""

from starlette.requests import Request

from bulwark.services.abuse_detector import UNKNOWN_CLIENT


def client_ip(request: Request) -> str:
    """
    Source address of the connection, or "unknown" when the server reports none.

    Behind a proxy or NAT this is the proxy's address. Forwarding headers
    are not consulted.
    """
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT
