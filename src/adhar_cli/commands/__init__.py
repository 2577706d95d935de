"""CLI commands registered on the root group."""

from .cluster import cluster
from .config_cmd import config
from .down import down
from .up import up

__all__ = ["cluster", "config", "down", "up"]
