"""Path management for adhar-cli.

Manages ~/.adhar/ and the well-known locations the CLI reads and writes.
"""

import os
import tempfile
from pathlib import Path

# Base directory for all adhar data
ADHAR_DIR = Path.home() / ".adhar"

# Declarative platform configuration
CONFIG_FILE = ADHAR_DIR / "config.yaml"

# Log directory
LOG_DIR = ADHAR_DIR / "logs"

# Generated kind configs, certificates and other scratch files
WORK_DIR = ADHAR_DIR / "work"

# Default kubeconfig written by kind and cloud CLIs
KUBECONFIG_FILE = Path.home() / ".kube" / "config"

# Persisted local cluster registry (kind has no durable listing of its own)
CLUSTER_STORE_FILE_NAME = "adhar-kind-clusters.json"


def ensure_dirs() -> None:
    """Create the ~/.adhar directory structure if missing.

    Silent, idempotent; directories are user-only (0o700).
    """
    ADHAR_DIR.mkdir(mode=0o700, exist_ok=True)
    LOG_DIR.mkdir(mode=0o700, exist_ok=True)
    WORK_DIR.mkdir(mode=0o700, exist_ok=True)


def get_config_file() -> Path:
    """Get the platform config file path, honouring ADHAR_CONFIG."""
    override = os.environ.get("ADHAR_CONFIG")
    return Path(override).expanduser() if override else CONFIG_FILE


def get_cluster_store_file() -> Path:
    """Get the local cluster store path.

    Returns:
        ADHAR_CLUSTER_STORE if set, else <tempdir>/adhar-kind-clusters.json
    """
    override = os.environ.get("ADHAR_CLUSTER_STORE")
    if override:
        return Path(override).expanduser()
    return Path(tempfile.gettempdir()) / CLUSTER_STORE_FILE_NAME


def get_log_file(name: str = "adhar") -> Path:
    """Get path to a log file.

    Args:
        name: Log file name (without extension)

    Returns:
        Path to the log file
    """
    return LOG_DIR / f"{name}.log"
