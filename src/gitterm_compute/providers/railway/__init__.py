"""Railway compute provider."""

from gitterm_compute.providers.railway.client import RailwayClient
from gitterm_compute.providers.railway.provider import RailwayProvider, build_multi_region_config

__all__ = ["RailwayClient", "RailwayProvider", "build_multi_region_config"]
