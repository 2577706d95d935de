"""Cluster providers.

Importing this package registers the built-in providers (kind, aws, azure,
gcp, digitalocean, civo, custom) in the default registry.
"""

from .aws import AWSProvider
from .azure import AzureProvider
from .base import MANAGED_TAGS, Provider, QuotaChecker, supports_quota_check
from .civo import CivoProvider
from .cli import CliProvider
from .custom import CustomProvider
from .digitalocean import DigitalOceanProvider
from .gcp import GCPProvider
from .kind import KindConfigGenerator, KindProvider
from .locator import DEFAULT_PROVIDER, ClusterLocator
from .registry import (
    PROVIDER_CATALOG,
    ProviderInfo,
    ProviderRegistry,
    create_provider,
    default_registry,
    get_provider_info,
    register_provider,
)
from .retry import DEFAULT_RETRY_POLICY, RetryPolicy, retry_async
from .store import ClusterStore, FileClusterStore, MemoryClusterStore

__all__ = [
    # Interface
    "MANAGED_TAGS",
    "Provider",
    "QuotaChecker",
    "supports_quota_check",
    # Registry
    "PROVIDER_CATALOG",
    "ProviderInfo",
    "ProviderRegistry",
    "create_provider",
    "default_registry",
    "get_provider_info",
    "register_provider",
    # Stores
    "ClusterStore",
    "FileClusterStore",
    "MemoryClusterStore",
    # Retry
    "DEFAULT_RETRY_POLICY",
    "RetryPolicy",
    "retry_async",
    # Lookup
    "ClusterLocator",
    "DEFAULT_PROVIDER",
    # Implementations
    "AWSProvider",
    "AzureProvider",
    "CivoProvider",
    "CliProvider",
    "CustomProvider",
    "DigitalOceanProvider",
    "GCPProvider",
    "KindConfigGenerator",
    "KindProvider",
]
