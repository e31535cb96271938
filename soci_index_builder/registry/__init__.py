"""Amazon ECR access: authentication, OCI distribution client, session."""

from soci_index_builder.registry.client import RegistryClient
from soci_index_builder.registry.session import RegistrySession

__all__ = ["RegistryClient", "RegistrySession"]
