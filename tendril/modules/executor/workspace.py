"""Ephemeral per-job workspace: template checkout, variables file, cleanup."""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import List, Union

from tendril.errors import ExternalProcessError

logger = logging.getLogger("tendril.executor.workspace")

TEMPLATES_DIR = "templates"
TFVARS_FILE = "terraform.tfvars.json"


class Workspace:
    """
    Isolated, single-use directory tree for one provisioning job.

    Use as a context manager so the tree is removed on every exit path:

        with Workspace.create(root, job_id) as ws:
            ws.setup(repo, version)
    """

    def __init__(self, provision_id: str, base_dir: Path, git_bin: str = "git"):
        self.id = provision_id
        self.base_dir = base_dir
        self.git_bin = git_bin

    @classmethod
    def create(
        cls, root: Union[str, Path], provision_id: str, git_bin: str = "git"
    ) -> "Workspace":
        """
        Create the workspace directory ``<root>/<provision_id>``.

        A directory left behind by a crashed run is removed first.

        Raises:
            ValueError: If the provision id would escape the root
            OSError: If the directory cannot be created
        """
        root = Path(root).resolve()
        base_dir = (root / provision_id).resolve()
        if base_dir.parent != root:
            raise ValueError(f"invalid provision id for workspace: {provision_id!r}")

        if base_dir.exists():
            logger.warning(f"[{provision_id}] Removing stale workspace {base_dir}")
            shutil.rmtree(base_dir)

        base_dir.mkdir(parents=True, mode=0o755)
        return cls(provision_id, base_dir, git_bin=git_bin)

    def __enter__(self) -> "Workspace":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()

    @property
    def working_dir(self) -> Path:
        """Directory the templates are checked out into and Terraform runs in."""
        return self.base_dir / TEMPLATES_DIR

    def setup(self, repo_url: str, version: str = "") -> None:
        """
        Clone the template repository and check out ``version``.

        An empty version leaves the repository on its default branch.

        Raises:
            ExternalProcessError: If git fails or the URL is empty
        """
        if not repo_url:
            raise ExternalProcessError("git clone", output="template repository URL is required")

        logger.info(f"[{self.id}] Cloning templates from {repo_url}...")
        self._git(["clone", repo_url, str(self.working_dir)], cwd=self.base_dir)

        if version:
            logger.info(f"[{self.id}] Checking out template version: {version}")
            self._git(["checkout", version], cwd=self.working_dir)
        else:
            logger.warning(f"[{self.id}] No version provided. Using default branch (latest).")

        logger.info(f"[{self.id}] Templates prepared successfully.")

    def write_tfvars(self, content: bytes) -> Path:
        """Write the Terraform variables file into the working directory."""
        path = self.working_dir / TFVARS_FILE
        path.write_bytes(content)
        os.chmod(path, 0o600)
        return path

    def cleanup(self) -> None:
        """Remove the workspace tree. Failures are logged, never raised."""
        try:
            shutil.rmtree(self.base_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[{self.id}] Failed to cleanup workspace: {e}")

    def _git(self, args: List[str], cwd: Path) -> None:
        cmd = [self.git_bin] + args
        command = " ".join([self.git_bin, args[0]])

        try:
            process = subprocess.run(
                cmd,
                cwd=str(cwd),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
            )
        except OSError as e:
            raise ExternalProcessError(command, output=str(e)) from e

        if process.returncode != 0:
            raise ExternalProcessError(command, process.returncode, process.stdout.strip())
