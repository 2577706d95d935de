"""GitOps repository population.

Each repository is built in a working directory inside the Gitea pod:
clone (or init), clear the tree, copy platform content in, commit, then
force-push to `main`, falling back to `master`. Pushing straight to the bare
repository on the pod's volume avoids needing Gitea credentials for git.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import AdharError, CommandError, ResourceError
from ..shared.logging import get_logger
from .gitea import GiteaServer
from .manifests import GITEA_ADMIN_USER, PlatformLayout

logger = get_logger(__name__)

GIT_USER_NAME = "Adhar Platform"
GIT_USER_EMAIL = "admin@adhar.io"
REPOSITORY_ROOT = f"/data/git/gitea-repositories/{GITEA_ADMIN_USER}"
PUSH_BRANCHES = ("main", "master")


@dataclass
class RepositorySource:
    """Local path copied to a destination inside the working tree."""

    path: Path
    destination: str = ""
    required: bool = True


@dataclass
class RepositorySpec:
    """What one GitOps repository should contain."""

    name: str
    commit_message: str
    sources: list[RepositorySource] = field(default_factory=list)
    clone_existing: bool = True

    @property
    def working_dir(self) -> str:
        return f"/tmp/{self.name}-working"

    @property
    def remote(self) -> str:
        return f"{REPOSITORY_ROOT}/{self.name}.git"


def platform_repositories(layout: PlatformLayout) -> list[RepositorySpec]:
    """The bootstrap, packages and environments repositories."""
    resources = layout.resources_dir
    return [
        RepositorySpec(
            name="bootstrap",
            commit_message="feat: Add platform bootstrap manifests",
            clone_existing=False,
            sources=[
                RepositorySource(
                    resources / "crossplane" / "install.yaml", "crossplane/", required=False
                ),
                RepositorySource(resources / "nginx" / "install.yaml", "nginx/", required=False),
                RepositorySource(resources / "ingress", "ingress/", required=False),
                RepositorySource(layout.crds_dir, "crds/", required=False),
                RepositorySource(layout.control_plane_dir, "control-plane/", required=False),
            ],
        ),
        RepositorySpec(
            name="packages",
            commit_message="feat: Add all platform packages and stack content",
            sources=[RepositorySource(layout.stack_dir / "packages")],
        ),
        RepositorySpec(
            name="environments",
            commit_message="feat: Add environment configurations",
            sources=[RepositorySource(layout.stack_dir / "environments")],
        ),
    ]


@dataclass
class PopulateResult:
    """Outcome of populating one repository."""

    name: str
    pushed: bool
    branch: str | None = None
    message: str = ""


class RepositoryPopulator:
    """Populate repositories through the Gitea pod."""

    def __init__(self, gitea: GiteaServer, cleanup_delay_seconds: float = 2.0):
        """Initialize populator.

        Args:
            gitea: Gitea helper bound to the target cluster.
            cleanup_delay_seconds: Pause after removing a stale working directory.
        """
        self.gitea = gitea
        self.kubectl = gitea.kubectl
        self.cleanup_delay_seconds = cleanup_delay_seconds

    async def _git(self, pod: str, spec: RepositorySpec, *args: str):
        command = ["git", "-C", spec.working_dir, *args]
        return await self.kubectl.exec(pod, command, self.gitea.namespace)

    async def populate(self, pod: str, spec: RepositorySpec) -> PopulateResult:
        """Clone, replace contents, commit and push one repository.

        Returns:
            PopulateResult; pushed is False when there was nothing to commit.

        Raises:
            CommandError: A required git or copy step failed.
            ResourceError: Push failed on every branch.
        """
        namespace = self.gitea.namespace
        workdir = spec.working_dir
        logger.info("populating repository", repository=spec.name)

        cleanup = await self.kubectl.exec(pod, ["rm", "-rf", spec.working_dir], namespace)
        if not cleanup.ok:
            logger.debug(
                "stale working dir not removed", repository=spec.name, error=cleanup.output
            )
        await asyncio.sleep(self.cleanup_delay_seconds)

        cloned = False
        if spec.clone_existing:
            clone = await self.kubectl.exec(pod, ["git", "clone", spec.remote, workdir], namespace)
            cloned = clone.ok
            if not cloned:
                logger.warning(
                    "clone failed, initializing", repository=spec.name, error=clone.output
                )
        if not cloned:
            await self.gitea.exec_checked(pod, ["mkdir", "-p", spec.working_dir])
            await self.gitea.exec_checked(pod, ["git", "-C", workdir, "init", "-b", "main"])

        clean = await self.kubectl.exec(
            pod,
            [
                "sh",
                "-c",
                f"cd {workdir} && "
                "find . -mindepth 1 -maxdepth 1 ! -name '.git' -exec rm -rf {} +",
            ],
            namespace,
        )
        if not clean.ok:
            logger.debug("working tree not cleaned", repository=spec.name, error=clean.output)

        for source in spec.sources:
            destination = f"{spec.working_dir}/{source.destination}"
            copy = await self.kubectl.copy_to_pod(source.path, pod, destination, namespace)
            if copy.ok:
                continue
            if source.required:
                raise CommandError(
                    command=["kubectl", "cp", str(source.path)],
                    returncode=copy.returncode,
                    stderr=copy.output,
                    message=f"failed to copy {source.path} into {spec.name}: {copy.output}",
                )
            logger.warning("source not copied", repository=spec.name, source=str(source.path))

        for key, value in (("user.name", GIT_USER_NAME), ("user.email", GIT_USER_EMAIL)):
            await self.gitea.exec_checked(pod, ["git", "-C", workdir, "config", key, value])
        await self.gitea.exec_checked(pod, ["git", "-C", spec.working_dir, "add", "."])

        commit = await self._git(pod, spec, "commit", "-m", spec.commit_message)
        if not commit.ok:
            if "nothing to commit" in commit.output:
                logger.info("repository already up to date", repository=spec.name)
                return PopulateResult(name=spec.name, pushed=False, message="already up to date")
            logger.warning("git commit failed", repository=spec.name, error=commit.output)

        remote = await self._git(pod, spec, "remote", "add", "origin", spec.remote)
        if not remote.ok:
            logger.debug("remote not added, likely exists", repository=spec.name)

        last_error = ""
        for branch in PUSH_BRANCHES:
            push = await self._git(pod, spec, "push", "-u", "origin", branch, "--force")
            if push.ok:
                logger.info("repository pushed", repository=spec.name, branch=branch)
                return PopulateResult(name=spec.name, pushed=True, branch=branch, message="pushed")
            last_error = push.output
            logger.warning("push failed", repository=spec.name, branch=branch, error=last_error)

        raise ResourceError(
            operation="push",
            resource_type="repository",
            resource_id=spec.name,
            message=f"failed to push to {spec.name} repository: {last_error}",
        )

    async def populate_all(self, specs: list[RepositorySpec]) -> list[PopulateResult]:
        """Create and populate every repository.

        Repositories are independent: a failure in one does not stop the
        others, but any failure fails the whole step afterwards.

        Raises:
            ResourceError: One or more repositories could not be populated.
        """
        for spec in specs:
            await self.gitea.create_repository(spec.name)

        pod = await self.gitea.pod_name()
        results: list[PopulateResult] = []
        failures: dict[str, str] = {}
        for spec in specs:
            try:
                results.append(await self.populate(pod, spec))
            except AdharError as e:
                logger.error("repository population failed", repository=spec.name, error=str(e))
                failures[spec.name] = str(e)

        if failures:
            detail = "; ".join(f"{name}: {error}" for name, error in failures.items())
            raise ResourceError(
                operation="populate",
                resource_type="repository",
                resource_id=", ".join(failures),
                message=(
                    f"failed to populate {len(failures)} of {len(specs)} repositories: {detail}"
                ),
            )
        return results
