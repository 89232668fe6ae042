"""Per-region network context for the AWS provider."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class NetworkConfig:
    """Default VPC, public subnets and the three workspace security groups."""

    vpc_id: str
    vpc_cidr: str
    subnet_ids: tuple[str, ...]
    alb_security_group_id: str
    tasks_security_group_id: str
    efs_security_group_id: str


class NetworkConfigCache:
    """Region-keyed NetworkConfig cache.

    Entries are populated once and kept for the process lifetime. They are
    not invalidated when the underlying VPC changes out-of-band; restart the
    process to pick up a new topology.
    """

    def __init__(self) -> None:
        self._entries: dict[str, NetworkConfig] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, region: str) -> NetworkConfig | None:
        return self._entries.get(region)

    def __contains__(self, region: object) -> bool:
        return region in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_populate(
        self,
        region: str,
        factory: Callable[[], Awaitable[NetworkConfig]],
    ) -> NetworkConfig:
        """Return the cached entry, computing it at most once per region."""
        cached = self._entries.get(region)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(region, asyncio.Lock())
        async with lock:
            cached = self._entries.get(region)
            if cached is not None:
                return cached
            network = await factory()
            self._entries[region] = network
            return network
