"""kubectl wrapper used by the bootstrap sequencer, the local pipeline and providers."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from ..shared.logging import get_logger
from ..shared.shell import CommandResult, CommandRunner, run_command

logger = get_logger(__name__)

# Namespace every platform component lives in
ADHAR_NAMESPACE = "adhar-system"


class Kubectl:
    """Run kubectl against one cluster."""

    def __init__(
        self,
        kubeconfig: str | None = None,
        context: str | None = None,
        runner: CommandRunner | None = None,
        binary: str = "kubectl",
    ):
        """Initialize wrapper.

        Args:
            kubeconfig: Path to kubeconfig file.
            context: Kubeconfig context to use.
            runner: Command runner (defaults to real subprocesses).
            binary: kubectl executable name or path.
        """
        self.kubeconfig = kubeconfig
        self.context = context
        self.runner = runner or run_command
        self.binary = binary

    def _kubectl_cmd(self) -> list[str]:
        """Build base kubectl command."""
        cmd = [self.binary]
        if self.kubeconfig:
            cmd.extend(["--kubeconfig", self.kubeconfig])
        if self.context:
            cmd.extend(["--context", self.context])
        return cmd

    async def run(
        self, *args: str, input: str | None = None, timeout: float | None = None
    ) -> CommandResult:
        return await self.runner(self._kubectl_cmd() + list(args), input=input, timeout=timeout)

    async def apply_file(self, path: str | Path, namespace: str | None = None) -> str:
        """Apply a manifest file, directory or URL.

        Returns:
            kubectl output

        Raises:
            CommandError: kubectl apply failed
        """
        args = ["apply", "-f", str(path)]
        if namespace:
            args.extend(["-n", namespace])
        result = (await self.run(*args)).check()
        return result.stdout

    async def apply_manifests(
        self, manifests: list[dict[str, Any]], server_side: bool = False
    ) -> str:
        """Apply in-memory manifests through stdin (multi-document YAML).

        Raises:
            CommandError: kubectl apply failed
        """
        document = yaml.dump_all(manifests, default_flow_style=False, sort_keys=False)
        args = ["apply", "-f", "-"]
        if server_side:
            args.extend(["--server-side", "--force-conflicts"])
        result = (await self.run(*args, input=document)).check()
        return result.stdout

    async def wait_for(
        self,
        resource: str,
        namespace: str = ADHAR_NAMESPACE,
        condition: str = "available",
        timeout_seconds: int = 300,
    ) -> tuple[bool, str]:
        """Wait for a condition on a resource (e.g. deployment/argocd-server).

        Returns:
            Tuple of (success, message).
        """
        result = await self.run(
            "wait",
            f"--for=condition={condition}",
            resource,
            f"--namespace={namespace}",
            f"--timeout={timeout_seconds}s",
        )
        if not result.ok:
            return False, f"{resource} not {condition}: {result.stderr.strip()}"
        return True, f"{resource} {condition}"

    async def wait_for_pods(
        self, selector: str, namespace: str = ADHAR_NAMESPACE, timeout_seconds: int = 300
    ) -> tuple[bool, str]:
        """Wait for pods matching a label selector to be ready.

        Returns:
            Tuple of (success, message).
        """
        result = await self.run(
            "wait",
            "--for=condition=ready",
            "pod",
            "-l",
            selector,
            f"--namespace={namespace}",
            f"--timeout={timeout_seconds}s",
        )
        if not result.ok:
            return False, f"Pods not ready: {result.stderr.strip()}"
        return True, "All pods ready"

    async def exists(self, kind: str, name: str, namespace: str | None = None) -> bool:
        args = ["get", kind, name]
        if namespace:
            args.extend(["-n", namespace])
        return (await self.run(*args)).ok

    async def get_jsonpath(
        self, kind: str, name: str | None, jsonpath: str, namespace: str | None = None
    ) -> str:
        """Read one field with a jsonpath expression; empty string when absent or on error."""
        args = ["get", kind]
        if name:
            args.append(name)
        if namespace:
            args.extend(["-n", namespace])
        args.extend(["-o", f"jsonpath={jsonpath}"])
        result = await self.run(*args)
        return result.stdout.strip() if result.ok else ""

    async def first_pod(self, selector: str, namespace: str = ADHAR_NAMESPACE) -> str:
        """Name of the first pod matching a selector, or empty string."""
        result = await self.run(
            "get", "pods",
            "-n", namespace,
            "-l", selector,
            "-o", "jsonpath={.items[0].metadata.name}",
        )
        return result.stdout.strip() if result.ok else ""

    async def exec(
        self, pod: str, command: list[str], namespace: str = ADHAR_NAMESPACE
    ) -> CommandResult:
        return await self.run("exec", "-n", namespace, pod, "--", *command)

    async def copy_to_pod(
        self, source: str | Path, pod: str, destination: str, namespace: str = ADHAR_NAMESPACE
    ) -> CommandResult:
        return await self.run("cp", str(source), f"{namespace}/{pod}:{destination}")

    async def namespace_exists(self, namespace: str) -> bool:
        return await self.exists("namespace", namespace)

    async def create_namespace(self, namespace: str) -> bool:
        """Create a namespace unless it already exists.

        Returns:
            True if created, False if it was already there

        Raises:
            CommandError: kubectl failed
        """
        if await self.namespace_exists(namespace):
            return False
        await self.apply_manifests(
            [{"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": namespace}}]
        )
        logger.info("namespace created", namespace=namespace)
        return True
