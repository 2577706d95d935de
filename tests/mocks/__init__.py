"""Test doubles for adhar-cli.

Provides fake implementations for testing:
- FakeRunner: scripted external commands (kubectl, helm, kind, cloud CLIs)
- FakeProvider: in-memory cluster provider
- FakePlatformClient / FakeControllerManager: local pipeline collaborators
"""

from .platform import FakeControllerManager, FakePlatformClient
from .provider import FakeProvider, QuotaAwareProvider
from .runner import FakeRunner, fail

__all__ = [
    "FakeControllerManager",
    "FakePlatformClient",
    "FakeProvider",
    "FakeRunner",
    "QuotaAwareProvider",
    "fail",
]
