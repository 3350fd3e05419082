"""
Pytest fixtures for fedfs tests.

Provides:
- trio as the only anyio backend (the connector uses trio primitives)
- a small federated directory tree
- a fake clock and an in-memory native store
"""

import os

import pytest

from fedfs.connector import FederationConnector

from .helpers import FakeClock, InMemoryStore, make_config


@pytest.fixture
def anyio_backend():
    return "trio"


@pytest.fixture
def fed_root(tmp_path):
    """
    <root>/
      FileSystem1/
        ds1            "abc123"
        ds2            "hello world"
        notes.tmp      "scratch"
        nested/
          deep.txt     "deep"
      top.txt          "top"
    """
    root = tmp_path / "federated"
    fs1 = root / "FileSystem1"
    (fs1 / "nested").mkdir(parents=True)
    (fs1 / "ds1").write_bytes(b"abc123")
    (fs1 / "ds2").write_bytes(b"hello world")
    (fs1 / "notes.tmp").write_bytes(b"scratch")
    (fs1 / "nested" / "deep.txt").write_bytes(b"deep")
    (root / "top.txt").write_bytes(b"top")
    return os.path.realpath(str(root))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def make_connector(fed_root, store, clock):
    """Factory: connector over fed_root with optional mount overrides."""
    def factory(**mount_kwargs):
        return FederationConnector(make_config(fed_root, **mount_kwargs), store, clock=clock)
    return factory
