"""Access control for the execution gateway."""

import hmac
import ipaddress
import logging
from functools import lru_cache

from fastapi import Header, HTTPException, Request, status

from opsdeck.config import get_settings

logger = logging.getLogger(__name__)

Network = ipaddress.IPv4Network | ipaddress.IPv6Network


@lru_cache(maxsize=8)
def parse_networks(raw: str) -> tuple[Network, ...]:
    networks: list[Network] = []
    for item in raw.split(","):
        cleaned = item.strip()
        if not cleaned:
            continue
        try:
            networks.append(ipaddress.ip_network(cleaned, strict=False))
        except ValueError:
            logger.warning("ignoring invalid network in allowlist", extra={"network": cleaned})
    return tuple(networks)


def is_private_address(host: str | None, networks: tuple[Network, ...]) -> bool:
    if not host:
        return False
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    # ::ffff:172.17.0.1 style addresses from dual-stack sockets
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return any(address.version == net.version and address in net for net in networks)


def require_private_network(request: Request) -> None:
    host = request.client.host if request.client else None
    networks = parse_networks(get_settings().runner_allowed_networks)
    if not is_private_address(host, networks):
        logger.warning("rejected request from non-private address", extra={"remote": host})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden: private network only")


def extract_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token:
        return None
    return token


def require_runner_token(authorization: str | None = Header(default=None)) -> None:
    expected = get_settings().runner_token
    presented = extract_bearer(authorization)
    if not expected or presented is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if not hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
