"""AWS (ECS Fargate) compute provider."""

from gitterm_compute.providers.aws.network import NetworkConfig, NetworkConfigCache
from gitterm_compute.providers.aws.provider import AwsProvider, status_from_service

__all__ = ["AwsProvider", "NetworkConfig", "NetworkConfigCache", "status_from_service"]
