"""Gitea readiness and repository creation.

Gitea is reached through `kubectl exec` into its pod, so the CLI needs no
port-forward or ingress to talk to it during bootstrap.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json

from ..errors import CommandError, OperationTimeoutError, ResourceError
from ..shared.logging import get_logger
from .kubectl import ADHAR_NAMESPACE, Kubectl
from .manifests import GITEA_ADMIN_USER

logger = get_logger(__name__)

GITEA_SELECTOR = "app=gitea"
GITEA_SERVICE = "gitea-http"
GITEA_CREDENTIAL_SECRET = "gitea-credential"
VERSION_PROBE = "curl -s -f -m 5 http://localhost:3000/api/v1/version"


class GiteaServer:
    """Gitea running in the platform namespace."""

    def __init__(
        self,
        kubectl: Kubectl,
        namespace: str = ADHAR_NAMESPACE,
        admin_password: str | None = None,
        wait_timeout_seconds: int = 600,
        settle_seconds: float = 30.0,
        endpoint_delay_seconds: float = 5.0,
        endpoint_grace_seconds: float = 10.0,
        api_retry_delay_seconds: float = 15.0,
        repo_retry_delay_seconds: float = 5.0,
        repo_attempts: int = 3,
    ):
        """Initialize Gitea helper.

        Args:
            kubectl: kubectl bound to the target cluster.
            namespace: Namespace Gitea runs in.
            admin_password: Admin password; read from the gitea-credential secret when omitted.
            wait_timeout_seconds: Budget for the deployment and pod waits.
            settle_seconds: Fixed delay for database and API initialization.
            endpoint_delay_seconds: Delay before the endpoints check.
            endpoint_grace_seconds: Extra delay when the service has no endpoints yet.
            api_retry_delay_seconds: Delay before the single API probe retry.
            repo_retry_delay_seconds: Delay between repository creation attempts.
            repo_attempts: Repository creation attempts.
        """
        self.kubectl = kubectl
        self.namespace = namespace
        self.admin_password = admin_password
        self.wait_timeout_seconds = wait_timeout_seconds
        self.settle_seconds = settle_seconds
        self.endpoint_delay_seconds = endpoint_delay_seconds
        self.endpoint_grace_seconds = endpoint_grace_seconds
        self.api_retry_delay_seconds = api_retry_delay_seconds
        self.repo_retry_delay_seconds = repo_retry_delay_seconds
        self.repo_attempts = repo_attempts

    async def pod_name(self) -> str:
        """Name of the Gitea pod.

        Raises:
            ResourceError: No Gitea pod is running.
        """
        pod = await self.kubectl.first_pod(GITEA_SELECTOR, self.namespace)
        if not pod:
            raise ResourceError(
                operation="find",
                resource_type="pod",
                resource_id=GITEA_SELECTOR,
                message="no Gitea pod found",
            )
        return pod

    async def verify_api(self) -> tuple[bool, str]:
        """Probe the version endpoint from inside the pod.

        Returns:
            Tuple of (success, message).
        """
        try:
            pod = await self.pod_name()
        except ResourceError as e:
            return False, str(e)
        result = await self.kubectl.exec(pod, ["sh", "-c", VERSION_PROBE], self.namespace)
        if not result.ok:
            return False, f"Gitea API not responding: {result.output}"
        return True, result.stdout.strip()

    async def wait_ready(self) -> None:
        """Wait for Gitea to accept API calls.

        Five steps: deployment available, pods ready, service endpoints,
        settle delay, then an API probe with one retry.

        Raises:
            OperationTimeoutError: Deployment or pods did not become ready.
            ResourceError: The API did not answer after the retry.
        """
        logger.info("waiting for gitea", step="1/5", check="deployment available")
        ok, message = await self.kubectl.wait_for(
            "deployment/gitea", self.namespace, "available", self.wait_timeout_seconds
        )
        if not ok:
            raise OperationTimeoutError(
                operation="gitea deployment",
                timeout_seconds=self.wait_timeout_seconds,
                message=f"Gitea deployment not available: {message}",
            )

        logger.info("waiting for gitea", step="2/5", check="pods ready")
        ok, message = await self.kubectl.wait_for_pods(
            GITEA_SELECTOR, self.namespace, self.wait_timeout_seconds
        )
        if not ok:
            raise OperationTimeoutError(
                operation="gitea pods",
                timeout_seconds=self.wait_timeout_seconds,
                message=f"Gitea pods not ready: {message}",
            )

        logger.info("waiting for gitea", step="3/5", check="service endpoints")
        await asyncio.sleep(self.endpoint_delay_seconds)
        address = await self.kubectl.get_jsonpath(
            "endpoints", GITEA_SERVICE, "{.subsets[0].addresses[0].ip}", self.namespace
        )
        if not address:
            logger.warning("gitea service has no endpoints yet", delay=self.endpoint_grace_seconds)
            await asyncio.sleep(self.endpoint_grace_seconds)

        logger.info(
            "waiting for gitea", step="4/5", check="initialization", seconds=self.settle_seconds
        )
        await asyncio.sleep(self.settle_seconds)

        logger.info("waiting for gitea", step="5/5", check="api")
        ok, message = await self.verify_api()
        if not ok:
            logger.warning(
                "gitea api check failed, retrying",
                delay=self.api_retry_delay_seconds,
                error=message,
            )
            await asyncio.sleep(self.api_retry_delay_seconds)
            ok, message = await self.verify_api()
            if not ok:
                raise ResourceError(
                    operation="reach",
                    resource_type="service",
                    resource_id="gitea",
                    message=f"Gitea API still not responding: {message}",
                )
        logger.info("gitea ready")

    async def diagnostics(self) -> str:
        """Pod status, deployment status and recent logs for failure reports."""
        sections = []
        for title, args in (
            ("pods", ["get", "pods", "-n", self.namespace, "-l", GITEA_SELECTOR]),
            ("deployment", ["get", "deployment", "gitea", "-n", self.namespace, "-o", "wide"]),
            ("logs", ["logs", "-n", self.namespace, "-l", GITEA_SELECTOR, "--tail=50"]),
        ):
            result = await self.kubectl.run(*args)
            if result.output:
                sections.append(f"{title}:\n{result.output}")
        return "\n".join(sections)

    async def _password(self) -> str:
        if self.admin_password is None:
            encoded = await self.kubectl.get_jsonpath(
                "secret", GITEA_CREDENTIAL_SECRET, "{.data.password}", self.namespace
            )
            try:
                self.admin_password = base64.b64decode(encoded).decode() if encoded else ""
            except (binascii.Error, UnicodeDecodeError):
                self.admin_password = ""
        return self.admin_password

    async def create_repository(self, name: str) -> bool:
        """Create a repository owned by the admin user.

        Returns:
            True if created, False if it already existed

        Raises:
            ResourceError: All attempts failed.
        """
        pod = await self.pod_name()
        payload = json.dumps(
            {
                "name": name,
                "description": f"{name} repository",
                "private": False,
                "auto_init": True,
                "default_branch": "main",
            }
        )
        command = [
            "curl", "-s", "-X", "POST",
            f"http://localhost:3000/api/v1/admin/users/{GITEA_ADMIN_USER}/repos",
            "-H", "Content-Type: application/json",
            "-d", payload,
        ]
        password = await self._password()
        if password:
            command.extend(["-u", f"{GITEA_ADMIN_USER}:{password}"])

        for attempt in range(1, self.repo_attempts + 1):
            result = await self.kubectl.exec(pod, command, self.namespace)
            output = result.output.lower()
            if "already exists" in output or "conflict" in output:
                logger.info("repository already exists", repository=name)
                return False
            if result.ok:
                logger.info("repository created", repository=name)
                return True

            logger.warning(
                "repository creation failed",
                repository=name,
                attempt=attempt,
                max_attempts=self.repo_attempts,
                error=result.output,
            )
            if attempt < self.repo_attempts:
                await asyncio.sleep(self.repo_retry_delay_seconds)

        raise ResourceError(
            operation="create",
            resource_type="repository",
            resource_id=name,
            message=f"failed to create repository {name} after {self.repo_attempts} attempts",
        )

    async def exec_checked(self, pod: str, command: list[str]) -> str:
        """Run a command in the pod, raising on failure.

        Raises:
            CommandError: The command exited non-zero.
        """
        result = await self.kubectl.exec(pod, command, self.namespace)
        if not result.ok:
            raise CommandError(command=command, returncode=result.returncode, stderr=result.output)
        return result.stdout
