"""Tests for external content resolution."""

import pytest

from fedfs.errors import NotFederated, NotFound
from fedfs.linker import external_reference_of
from fedfs.models import EXTERNAL_CONTENT_PREDICATE, NativeMetadata

from .helpers import BASE_URI, collect


class TestExternalReferenceOf:
    """Only the exact predicate activates resolution."""

    def test_exact_predicate(self):
        meta = NativeMetadata(
            id="/r", is_container=False,
            relations=(("http://purl.org/dc/terms/title", "x"), (EXTERNAL_CONTENT_PREDICATE, f"{BASE_URI}/files/a")),
        )
        assert external_reference_of(meta) == f"{BASE_URI}/files/a"

    def test_similar_predicate_ignored(self):
        meta = NativeMetadata(
            id="/r", is_container=False,
            relations=(("http://other-vocabulary#hasExternalContent", f"{BASE_URI}/files/a"),),
        )
        assert external_reference_of(meta) is None

    def test_no_relations(self):
        assert external_reference_of(NativeMetadata(id="/r", is_container=False)) is None


class TestResolveContent:
    """Tests for resolve_content()."""

    @pytest.mark.anyio
    async def test_plain_native_resource(self, make_connector, store):
        store.add_binary("/native/obj", b"internal bytes")
        connector = make_connector()
        assert await collect(await connector.linker.resolve_content("/native/obj")) == b"internal bytes"

    @pytest.mark.anyio
    async def test_reference_reads_federated_bytes(self, make_connector, store):
        uri = f"{BASE_URI}/files/FileSystem1/ds1"
        store.add_binary("/native/obj", b"stale internal", relations=[(EXTERNAL_CONTENT_PREDICATE, uri)])
        connector = make_connector()

        data = await collect(await connector.linker.resolve_content("/native/obj"))

        assert data == b"abc123"
        assert ("native_read", "/native/obj") not in store.calls
        assert not [c for c in store.calls if c[0] == "native_write"]
        assert store.binaries["/native/obj"] == b"stale internal"

    @pytest.mark.anyio
    async def test_external_reference_lookup(self, make_connector, store):
        uri = f"{BASE_URI}/files/top.txt"
        store.add_binary("/native/obj", b"", relations=[(EXTERNAL_CONTENT_PREDICATE, uri)])
        store.add_binary("/native/plain", b"")
        connector = make_connector()
        assert await connector.linker.external_reference("/native/obj") == uri
        assert await connector.linker.external_reference("/native/plain") is None

    @pytest.mark.anyio
    async def test_reference_to_missing_file(self, make_connector, store):
        uri = f"{BASE_URI}/files/FileSystem1/gone"
        store.add_binary("/native/obj", b"", relations=[(EXTERNAL_CONTENT_PREDICATE, uri)])
        connector = make_connector()
        with pytest.raises(NotFound):
            await connector.linker.resolve_content("/native/obj")

    @pytest.mark.anyio
    async def test_reference_outside_federation(self, make_connector, store):
        store.add_binary("/native/obj", b"", relations=[(EXTERNAL_CONTENT_PREDICATE, "http://elsewhere/x")])
        connector = make_connector()
        with pytest.raises(NotFederated):
            await connector.linker.resolve_content("/native/obj")

    @pytest.mark.anyio
    async def test_missing_native_resource(self, make_connector):
        connector = make_connector()
        with pytest.raises(NotFound):
            await connector.linker.resolve_content("/native/none")
