"""Base class for cloud providers driven through their official CLIs.

Each cloud provider describes its commands (create, delete, describe, list,
kubeconfig, node pools) and how to read the CLI's JSON output; this class
runs them, maps failures onto the error taxonomy and builds Cluster records.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from abc import abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import (
    AuthenticationError,
    ClusterNotFoundError,
    CommandError,
    ResourceError,
)
from ..models import (
    Cluster,
    ClusterSpec,
    ClusterStatus,
    Credentials,
    NodeGroup,
    NodeGroupSpec,
    NodeGroupStatus,
    parse_time,
    utcnow,
)
from ..shared.logging import get_logger
from ..shared.shell import CommandResult, CommandRunner
from .base import MANAGED_TAGS, Provider
from .retry import DEFAULT_RETRY_POLICY, RetryPolicy, retry_async

logger = get_logger(__name__)

# Output fragments cloud CLIs print when a cluster does not exist
NOT_FOUND_MARKERS = (
    "not found",
    "notfound",
    "does not exist",
    "could not find",
    "resourcenotfoundexception",
    "404",
)


class CliProvider(Provider):
    """Provider whose operations are invocations of one cloud CLI."""

    #: Executable driving cluster lifecycle (eksctl, gcloud, az, doctl, civo)
    tool: str = ""

    #: Provider-native cluster states mapped onto ClusterStatus
    status_map: dict[str, ClusterStatus] = {}

    #: Backoff for idempotent reads (describe, list)
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY

    def __init__(self, config: dict[str, Any] | None = None, runner: CommandRunner | None = None):
        super().__init__(config, runner)
        self.credentials: Credentials | None = None

    def cli_env(self) -> dict[str, str]:
        """Environment variables carrying credentials to the CLI."""
        return {}

    def default_instance_type(self) -> str:
        return ""

    def check_identity(self, output: str) -> None:
        """Inspect identity command output; raise AuthenticationError if it shows no identity."""

    def cluster_tags(self, spec: ClusterSpec) -> dict[str, str]:
        return {**MANAGED_TAGS, "adhar.io/cluster-name": spec.name, **spec.tags}

    # -- command builders -----------------------------------------------------

    @abstractmethod
    def identity_args(self) -> list[str]:
        """Command proving the credentials are valid."""

    @abstractmethod
    def permission_args(self) -> list[str]:
        """Read-only command that needs cluster-management permissions."""

    @abstractmethod
    def create_args(self, spec: ClusterSpec) -> list[str]: ...

    @abstractmethod
    def delete_args(self, cluster_name: str) -> list[str]: ...

    @abstractmethod
    def describe_args(self, cluster_name: str) -> list[str]: ...

    @abstractmethod
    def list_args(self) -> list[str]: ...

    @abstractmethod
    def parse_cluster(self, data: dict[str, Any]) -> Cluster:
        """Build a Cluster from one describe/list JSON object."""

    def parse_cluster_list(self, data: Any) -> list[dict[str, Any] | str]:
        """Entries of the list command: full objects, or bare names to describe."""
        return list(data or [])

    def unwrap_describe(self, data: Any) -> dict[str, Any]:
        """Select the cluster object from describe output."""
        if isinstance(data, list):
            return data[0] if data else {}
        return data or {}

    def kubeconfig_args(self, cluster_name: str, path: str) -> tuple[list[str], bool]:
        """Command producing a kubeconfig.

        Returns:
            Tuple of (command, writes_file). When writes_file is True the
            command writes to `path` (passed through KUBECONFIG) instead of stdout.
        """
        raise self._unsupported("get kubeconfig")

    def upgrade_args(self, cluster_name: str, version: str) -> list[str] | None:
        return None

    def node_pool_create_args(self, cluster_name: str, spec: NodeGroupSpec) -> list[str] | None:
        return None

    def node_pool_delete_args(self, cluster_name: str, name: str) -> list[str] | None:
        return None

    def node_pool_scale_args(self, cluster_name: str, name: str, replicas: int) -> list[str] | None:
        return None

    def node_pool_list_args(self, cluster_name: str) -> list[str] | None:
        return None

    def parse_node_group(self, data: dict[str, Any]) -> NodeGroup:
        raise self._unsupported("list node groups")

    # -- execution ------------------------------------------------------------

    async def _cli(
        self, args: list[str], timeout: float | None = None, env: dict[str, str] | None = None
    ) -> CommandResult:
        merged = {**self.cli_env(), **(env or {})}
        return await self.runner(args, env=merged or None, timeout=timeout)

    async def _cli_json(self, args: list[str]) -> Any:
        """Run a read-only command and parse its JSON output, retrying transient failures."""

        async def read() -> Any:
            result = (await self._cli(args)).check()
            try:
                return json.loads(result.stdout) if result.stdout.strip() else None
            except ValueError as e:
                raise ResourceError(
                    operation="parse",
                    resource_type=f"{args[0]} output",
                    resource_id=" ".join(args[1:3]),
                    retryable=False,
                    message=f"unexpected output from {' '.join(args[:3])}: {e}",
                ) from e

        return await retry_async(read, self.retry_policy, description=" ".join(args[:3]))

    def _is_not_found(self, result: CommandResult) -> bool:
        output = result.output.lower()
        return any(marker in output for marker in NOT_FOUND_MARKERS)

    def _status(self, value: str | None) -> ClusterStatus:
        return self.status_map.get((value or "").lower(), ClusterStatus.UNKNOWN)

    def _time(self, value: str | None) -> datetime:
        try:
            return parse_time(value)
        except ValueError:
            return utcnow()

    def _build(
        self,
        name: str,
        status: str | None,
        version: str = "",
        endpoint: str | None = None,
        region: str = "",
        created: str | None = None,
        tags: dict[str, str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Cluster:
        created_at = self._time(created)
        return Cluster(
            id=self.cluster_id(name),
            name=name,
            provider=self.name,
            region=region or self.region,
            version=version or "",
            status=self._status(status),
            endpoint=endpoint or None,
            created_at=created_at,
            updated_at=created_at,
            tags=dict(tags or {}),
            metadata=dict(metadata or {}),
        )

    # -- Provider -------------------------------------------------------------

    async def authenticate(self, credentials: Credentials | None = None) -> None:
        """Run the CLI's identity command with the configured credentials.

        Raises:
            ToolNotFoundError: The CLI is not installed.
            AuthenticationError: The CLI rejected the credentials.
        """
        if credentials is not None:
            self.credentials = credentials
            self.config.update({k: v for k, v in credentials.data.items() if v})
        args = self.identity_args()
        result = await self._cli(args)
        if not result.ok:
            detail = result.stderr.strip() or result.stdout.strip()
            raise AuthenticationError(
                provider=self.name,
                message=f"{self.name} authentication failed: {detail}",
            )
        self.check_identity(result.stdout)
        logger.info("provider authenticated", provider=self.name)

    async def validate_permissions(self) -> None:
        result = await self._cli(self.permission_args())
        if not result.ok:
            raise AuthenticationError(
                provider=self.name,
                message=f"insufficient {self.name} permissions: {result.stderr.strip()}",
            )

    async def create_cluster(self, spec: ClusterSpec) -> Cluster:
        """Create the cluster through the CLI and return its described state.

        Raises:
            ValidationError: Spec is addressed to another provider.
            ResourceError: The CLI failed to create the cluster.
        """
        self.check_spec(spec)
        args = self.create_args(spec)
        logger.info("creating cluster", provider=self.name, cluster=spec.name, region=self.region)
        result = await self._cli(args)
        if not result.ok:
            raise ResourceError(
                operation="create",
                resource_type=f"{self.name} cluster",
                resource_id=spec.name,
                retryable=CommandError(command=args, stderr=result.stderr).retryable,
                message=f"failed to create {self.name} cluster '{spec.name}': {result.output}",
            )
        cluster = await self.get_cluster(self.cluster_id(spec.name))
        logger.info("cluster created", cluster_id=cluster.id, status=cluster.status.value)
        return cluster

    async def delete_cluster(self, cluster_id: str) -> None:
        """Delete a cluster; deleting an unknown cluster succeeds."""
        cluster_name = self.cluster_name(cluster_id)
        result = await self._cli(self.delete_args(cluster_name))
        if not result.ok:
            if self._is_not_found(result):
                logger.info("cluster already absent", cluster_id=cluster_id)
                return
            raise ResourceError(
                operation="delete",
                resource_type=f"{self.name} cluster",
                resource_id=cluster_name,
                message=f"failed to delete {self.name} cluster '{cluster_name}': {result.output}",
            )
        logger.info("cluster deleted", cluster_id=cluster_id)

    async def get_cluster(self, cluster_id: str) -> Cluster:
        cluster_name = self.cluster_name(cluster_id)
        args = self.describe_args(cluster_name)
        result = await self._cli(args)
        if not result.ok:
            if self._is_not_found(result):
                raise ClusterNotFoundError(cluster_id=cluster_id, provider=self.name)
            result.check()
        try:
            data = json.loads(result.stdout) if result.stdout.strip() else None
        except ValueError as e:
            raise ResourceError(
                operation="parse",
                resource_type=f"{self.name} cluster",
                resource_id=cluster_name,
                message=f"unexpected output from {' '.join(args[:3])}: {e}",
            ) from e
        item = self.unwrap_describe(data)
        if not item:
            raise ClusterNotFoundError(cluster_id=cluster_id, provider=self.name)
        return self.parse_cluster(item)

    async def list_clusters(self) -> list[Cluster]:
        entries = self.parse_cluster_list(await self._cli_json(self.list_args()))
        named = [entry for entry in entries if isinstance(entry, str)]
        clusters = [self.parse_cluster(entry) for entry in entries if isinstance(entry, dict)]
        if named:
            described = await asyncio.gather(
                *(self.get_cluster(self.cluster_id(name)) for name in named)
            )
            clusters.extend(described)
        return clusters

    async def get_kubeconfig(self, cluster_id: str) -> str:
        cluster_name = self.cluster_name(cluster_id)
        fd, path = tempfile.mkstemp(prefix=f"{self.name}-{cluster_name}-", suffix=".kubeconfig")
        os.close(fd)
        try:
            args, writes_file = self.kubeconfig_args(cluster_name, path)
            result = await self._cli(args, env={"KUBECONFIG": path} if writes_file else None)
            if not result.ok:
                if self._is_not_found(result):
                    raise ClusterNotFoundError(cluster_id=cluster_id, provider=self.name)
                result.check()
            return Path(path).read_text() if writes_file else result.stdout
        finally:
            Path(path).unlink(missing_ok=True)

    async def upgrade_cluster(self, cluster_id: str, version: str) -> None:
        args = self.upgrade_args(self.cluster_name(cluster_id), version)
        if args is None:
            raise self._unsupported("upgrade cluster")
        (await self._cli(args)).check()
        logger.info("cluster upgraded", cluster_id=cluster_id, version=version)

    async def add_node_group(self, cluster_id: str, spec: NodeGroupSpec) -> NodeGroup:
        args = self.node_pool_create_args(self.cluster_name(cluster_id), spec)
        if args is None:
            raise self._unsupported("add node group")
        (await self._cli(args)).check()
        return NodeGroup(
            name=spec.name,
            replicas=spec.replicas,
            instance_type=spec.instance_type or self.default_instance_type(),
            status=NodeGroupStatus.CREATING,
            labels=dict(spec.labels),
        )

    async def remove_node_group(self, cluster_id: str, name: str) -> None:
        args = self.node_pool_delete_args(self.cluster_name(cluster_id), name)
        if args is None:
            raise self._unsupported("remove node group")
        (await self._cli(args)).check()

    async def scale_node_group(self, cluster_id: str, name: str, replicas: int) -> None:
        args = self.node_pool_scale_args(self.cluster_name(cluster_id), name, replicas)
        if args is None:
            raise self._unsupported("scale node group")
        (await self._cli(args)).check()

    async def list_node_groups(self, cluster_id: str) -> list[NodeGroup]:
        args = self.node_pool_list_args(self.cluster_name(cluster_id))
        if args is None:
            raise self._unsupported("list node groups")
        data = await self._cli_json(args)
        return [self.parse_node_group(item) for item in data or []]

