"""Best-effort teardown of partially created workspace resources."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger()


@dataclass
class TeardownFailure:
    resource: str
    identifier: str
    error: str


@dataclass
class ResourceTeardown:
    """Runs deletion steps, logging failures instead of raising them.

    The failures are kept for inspection but never become the caller's
    result: the error (or success) of the surrounding operation is what
    the caller sees.
    """

    workspace_id: str
    failures: list[TeardownFailure] = field(default_factory=list)

    async def attempt(
        self,
        resource: str,
        identifier: str | None,
        action: Callable[[], Awaitable[Any]],
    ) -> bool:
        """Run one deletion step. Steps without an identifier are skipped."""
        if not identifier:
            return False
        try:
            await action()
        except Exception as e:
            logger.warning(
                "Failed to clean up workspace resource",
                workspace_id=self.workspace_id,
                resource=resource,
                identifier=identifier,
                error=str(e),
            )
            self.failures.append(TeardownFailure(resource, identifier, str(e)))
            return False

        logger.info(
            "Cleaned up workspace resource",
            workspace_id=self.workspace_id,
            resource=resource,
            identifier=identifier,
        )
        return True

    @property
    def succeeded(self) -> bool:
        return not self.failures
