"""Deterministic AWS resource naming.

Every per-workspace resource name is a pure function of the workspace id,
so repeated calls for the same id address the same resource set.
"""

import hashlib

RESOURCE_PREFIX = "gitterm"
SHORT_ID_LENGTH = 12

# arn:aws:ecs:<region>:<account>:service/<cluster>/<service>
ARN_SERVICE_INDEX = 2
ARN_REGION_INDEX = 3
ECS_ARN_SERVICE = "ecs"


def get_short_id(workspace_id: str) -> str:
    """First 12 hex characters of the SHA-1 digest of the workspace id."""
    return hashlib.sha1(workspace_id.encode("utf-8")).hexdigest()[:SHORT_ID_LENGTH]  # noqa: S324


def get_service_name(short_id: str) -> str:
    return f"{RESOURCE_PREFIX}-ws-{short_id}"


def get_task_definition_family(short_id: str) -> str:
    return f"{RESOURCE_PREFIX}-ws-{short_id}"


def get_load_balancer_name(short_id: str) -> str:
    return f"{RESOURCE_PREFIX}-alb-{short_id}"


def get_target_group_name(short_id: str) -> str:
    return f"{RESOURCE_PREFIX}-tg-{short_id}"


def get_file_system_token(short_id: str) -> str:
    """EFS creation token, used as the file system's idempotency key."""
    return f"{RESOURCE_PREFIX}-{short_id}"


def get_file_system_tag_name(short_id: str) -> str:
    return f"{RESOURCE_PREFIX}-efs-{short_id}"


def parse_region_from_service_arn(external_service_id: str | None) -> str | None:
    """Extract the region from an ECS service ARN.

    The handle is colon-delimited; the fourth segment is the region when the
    third segment names the ECS service namespace. Anything else yields None.
    """
    if not external_service_id:
        return None
    parts = external_service_id.split(":")
    if len(parts) > ARN_REGION_INDEX and parts[ARN_SERVICE_INDEX] == ECS_ARN_SERVICE:
        return parts[ARN_REGION_INDEX] or None
    return None


def service_name_from_handle(external_service_id: str) -> str:
    """Last path segment of a service ARN, or the handle itself."""
    return external_service_id.split("/")[-1] or external_service_id


def short_id_from_service_name(service_name: str) -> str:
    return service_name.removeprefix(f"{RESOURCE_PREFIX}-ws-")
