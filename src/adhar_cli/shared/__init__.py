"""Shared modules for adhar-cli.

This module provides functionality used by providers, pipelines and commands:
- Logging setup
- Well-known paths
- Subprocess execution
- Run cancellation
"""

from .cancel import CancelReason, CancelToken, install_signal_handlers
from .logging import configure_logging, get_logger, level_for_verbosity
from .paths import (
    ADHAR_DIR,
    CONFIG_FILE,
    KUBECONFIG_FILE,
    LOG_DIR,
    WORK_DIR,
    ensure_dirs,
    get_cluster_store_file,
    get_config_file,
)
from .shell import CommandResult, CommandRunner, run_command

__all__ = [
    # Paths
    "ADHAR_DIR",
    "CONFIG_FILE",
    "KUBECONFIG_FILE",
    "LOG_DIR",
    "WORK_DIR",
    "ensure_dirs",
    "get_cluster_store_file",
    "get_config_file",
    # Logging
    "configure_logging",
    "get_logger",
    "level_for_verbosity",
    # Subprocess
    "CommandResult",
    "CommandRunner",
    "run_command",
    # Cancellation
    "CancelReason",
    "CancelToken",
    "install_signal_handlers",
]
