"""Filesystem federation connector: directory trees projected as repository resources."""

from .connector import FederationConnector
from .errors import FederationError

__all__ = ["FederationConnector", "FederationError"]
