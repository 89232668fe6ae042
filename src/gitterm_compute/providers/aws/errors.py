"""botocore error classification for the AWS provider."""

from botocore.exceptions import ClientError

DUPLICATE_PERMISSION = "InvalidPermission.Duplicate"

NOT_FOUND_CODES = frozenset(
    {
        "LoadBalancerNotFound",
        "TargetGroupNotFound",
        "ListenerNotFound",
        "ServiceNotFoundException",
        "ClusterNotFoundException",
        "FileSystemNotFound",
        "MountTargetNotFound",
    }
)


def client_error_code(error: ClientError) -> str:
    code: str = error.response.get("Error", {}).get("Code", "")
    return code


def is_duplicate_permission(error: ClientError) -> bool:
    return client_error_code(error) == DUPLICATE_PERMISSION


def is_not_found(error: ClientError, *codes: str) -> bool:
    """Whether the error reports a missing resource.

    With explicit codes only those match; otherwise any known not-found code.
    """
    code = client_error_code(error)
    if codes:
        return code in codes
    return code in NOT_FOUND_CODES
