"""Public domain construction for workspaces."""

from typing import Literal

from gitterm_compute.config import settings

LOOPBACK_MARKER = "localhost"

RoutingMode = Literal["subdomain", "path"]


def is_insecure_host(base_domain: str) -> bool:
    """Plain HTTP is only used for loopback development hosts."""
    return LOOPBACK_MARKER in base_domain


def build_workspace_domain(
    subdomain: str,
    base_domain: str | None = None,
    routing_mode: RoutingMode | None = None,
) -> str:
    """Build the externally visible URL for a workspace.

    Path routing yields ``<scheme>://<base>/ws/<subdomain>``; subdomain
    routing yields ``<scheme>://<subdomain>.<base>``.
    """
    base = base_domain if base_domain is not None else settings.base_domain
    mode = routing_mode or settings.routing_mode
    scheme = "http" if is_insecure_host(base) else "https"

    if mode == "path":
        return f"{scheme}://{base}/ws/{subdomain}"
    return f"{scheme}://{subdomain}.{base}"
