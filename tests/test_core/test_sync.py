"""Tests for hotfix_tools.core.sync module."""

from __future__ import annotations

import json

import pytest

from hotfix_tools.core.config import SyncConfig
from hotfix_tools.core.ledger import CacheEntry, EntryState, Ledger
from hotfix_tools.core.sync import LinkManifest, SyncEngine, SyncReport
from hotfix_tools.core.types import ChannelKind, Outcome, Resource
from hotfix_tools.core.utils import compute_md5
from hotfix_tools.formats.block_index import BlockEntry, BlockIndex, BlockIndexParser
from hotfix_tools.formats.file_index import FileEntry, FileIndex, FileIndexParser, SubEntry
from hotfix_tools.formats.header import ManifestHeader, ManifestHeaderParser
from hotfix_tools.formats.mapper import MapperRecord

BASE = "https://cdn.test"
MAPPER_FOLDER = "client_game_res/1.0_live/output_100_abc123/client/Android"
MAPPER_URL = f"{BASE}/{MAPPER_FOLDER}"

BLOCK_A = b"base layer block"
BLOCK_B = b"inherited block"
DESIGN_FILE = b"design payload"
SCRIPT_FILE = b"script payload"
INDEX_HASH = "a1b2c3d4e5f60718293a4b5c6d7e8f90"
BLOCK_INDEX_HASH = "0f0e0d0c0b0a09080706050403020100"


def _resolve_fixture(temp_dir, profile, make_downloader, config=None):
    downloader = make_downloader(config)
    engine = SyncEngine(profile, temp_dir, downloader)
    ledger = Ledger.load(engine.ledger_path("1.0_live"))
    return engine, ledger


def _resource(name: str, content: bytes | None = None, md5: str | None = None) -> Resource:
    relative = f"{MAPPER_FOLDER}/{name}"
    if md5 is None:
        md5 = compute_md5(content) if content is not None else ""
    return Resource(url=f"{BASE}/{relative}", path=relative, md5=md5)


class TestResolve:
    """Test the per-resource state machine."""

    def test_confirmed_hash_skips_network(self, temp_dir, origin, mapper_profile, make_downloader):
        """A matching ledger hash is cached without any request."""
        engine, ledger = _resolve_fixture(temp_dir, mapper_profile, make_downloader)
        resource = _resource("a.blk", b"content")
        ledger.put(resource.url, CacheEntry.confirmed(resource.md5))

        assert engine.resolve(ledger, resource) is Outcome.CACHED
        assert origin.requests == []

    def test_not_found_never_downloads(self, temp_dir, origin, mapper_profile, make_downloader):
        """A not_found entry is never fetched again."""
        engine, ledger = _resolve_fixture(temp_dir, mapper_profile, make_downloader)
        resource = _resource("gone.blk", b"content")
        ledger.put(resource.url, CacheEntry.not_found())

        assert engine.resolve(ledger, resource) is Outcome.CACHED_ABSENT
        assert origin.requests == []

    def test_verified_on_disk(self, temp_dir, origin, mapper_profile, make_downloader):
        """A correct file on disk is recorded without a download."""
        engine, ledger = _resolve_fixture(temp_dir, mapper_profile, make_downloader)
        resource = _resource("a.blk", b"content")
        local = temp_dir / resource.path
        local.parent.mkdir(parents=True)
        local.write_bytes(b"content")

        assert engine.resolve(ledger, resource) is Outcome.VERIFIED
        assert origin.requests == []
        assert ledger.get(resource.url) == CacheEntry.confirmed(resource.md5)

    def test_stale_ledger_hash_redownloads(self, temp_dir, origin, mapper_profile, make_downloader):
        """A ledger hash for an older revision does not short-circuit."""
        engine, ledger = _resolve_fixture(temp_dir, mapper_profile, make_downloader)
        resource = _resource("a.blk", b"new content")
        ledger.put(resource.url, CacheEntry.confirmed(compute_md5(b"old content")))
        origin.add(resource.url, b"new content")

        assert engine.resolve(ledger, resource) is Outcome.DOWNLOADED
        assert ledger.get(resource.url) == CacheEntry.confirmed(resource.md5)
        assert (temp_dir / resource.path).read_bytes() == b"new content"

    def test_download_records_not_found(self, temp_dir, origin, mapper_profile, make_downloader):
        """A 404 is written to the ledger."""
        engine, ledger = _resolve_fixture(temp_dir, mapper_profile, make_downloader)
        resource = _resource("gone.blk", b"content")

        assert engine.resolve(ledger, resource) is Outcome.NOT_FOUND
        assert ledger.get(resource.url) == CacheEntry.not_found()
        assert json.loads(engine.ledger_path("1.0_live").read_text()) == {resource.url: "not_found"}

    def test_integrity_retry_then_unresolved(self, temp_dir, origin, mapper_profile, make_downloader):
        """Two mismatching downloads leave the resource unresolved and unrecorded."""
        engine, ledger = _resolve_fixture(temp_dir, mapper_profile, make_downloader)
        resource = _resource("bad.blk", b"expected content")
        origin.add(resource.url, b"corrupted content")

        assert engine.resolve(ledger, resource) is Outcome.UNRESOLVED
        assert origin.requests == [resource.url, resource.url]
        assert ledger.get(resource.url) is None

    def test_transient_failure_unresolved(self, temp_dir, origin, mapper_profile, make_downloader):
        """Exhausted retries leave the resource unresolved and unrecorded."""
        engine, ledger = _resolve_fixture(temp_dir, mapper_profile, make_downloader)
        resource = _resource("flaky.blk", b"content")
        origin.statuses[resource.url] = 503

        assert engine.resolve(ledger, resource) is Outcome.UNRESOLVED
        assert len(origin.requests) == 2
        assert resource.url not in ledger

    def test_unknown_hash_always_rechecked(self, temp_dir, origin, mapper_profile, make_downloader):
        """Resources without a hash are recorded as "" and fetched every pass."""
        engine, ledger = _resolve_fixture(temp_dir, mapper_profile, make_downloader)
        resource = _resource("M_DesignV.bytes")
        origin.add(resource.url, b"header")

        assert engine.resolve(ledger, resource) is Outcome.DOWNLOADED
        assert ledger.get(resource.url).state is EntryState.ALWAYS_RECHECK

        assert engine.resolve(ledger, resource) is Outcome.DOWNLOADED
        assert len(origin.requests) == 2

    def test_cross_version_reuse(self, temp_dir, origin, mapper_profile, make_downloader):
        """A confirmed entry under another output folder counts as cached."""
        engine, ledger = _resolve_fixture(temp_dir, mapper_profile, make_downloader)
        resource = _resource("a.blk", b"content")
        ledger.put(resource.url.replace("output_100_abc123", "output_90_0ff1ce"), CacheEntry.confirmed(resource.md5))

        assert engine.resolve(ledger, resource) is Outcome.CACHED
        assert origin.requests == []

    def test_cross_version_reuse_scans_all_versions(self, temp_dir, origin, mapper_profile, make_downloader):
        """A matching entry in an older output folder wins over a newer not_found."""
        engine, ledger = _resolve_fixture(temp_dir, mapper_profile, make_downloader)
        resource = _resource("a.blk", b"content")
        ledger.put(resource.url.replace("output_100_abc123", "output_1_aa"), CacheEntry.confirmed(resource.md5))
        ledger.put(resource.url.replace("output_100_abc123", "output_2_bb"), CacheEntry.not_found())

        assert engine.resolve(ledger, resource) is Outcome.CACHED
        assert origin.requests == []

    def test_cross_version_reuse_disabled(self, temp_dir, origin, mapper_profile, make_downloader):
        """With reuse off the file is downloaded."""
        config = SyncConfig(max_retries=2, base_backoff=0.0, reuse_across_versions=False)
        engine, ledger = _resolve_fixture(temp_dir, mapper_profile, make_downloader, config)
        resource = _resource("a.blk", b"content")
        ledger.put(resource.url.replace("output_100_abc123", "output_90_0ff1ce"), CacheEntry.confirmed(resource.md5))
        origin.add(resource.url, b"content")

        assert engine.resolve(ledger, resource) is Outcome.DOWNLOADED

    def test_blocked_destination_unresolved(self, temp_dir, origin, mapper_profile, make_downloader):
        """A file standing where the destination folder belongs leaves the resource unresolved."""
        engine, ledger = _resolve_fixture(temp_dir, mapper_profile, make_downloader)
        resource = _resource("AudioAssets/x.pck", b"xxx")
        origin.add(resource.url, b"xxx")
        blocker = temp_dir / MAPPER_FOLDER / "AudioAssets"
        blocker.parent.mkdir(parents=True)
        blocker.write_bytes(b"plain file")

        assert engine.resolve(ledger, resource) is Outcome.UNRESOLVED
        assert origin.requests == []
        assert resource.url not in ledger

    def test_unsafe_path(self, temp_dir, origin, mapper_profile, make_downloader):
        """Paths escaping the mirror root are refused."""
        engine, ledger = _resolve_fixture(temp_dir, mapper_profile, make_downloader)
        resource = Resource(url=f"{BASE}/x", path="../escape.blk", md5="")

        assert engine.resolve(ledger, resource) is Outcome.UNRESOLVED
        assert origin.requests == []


class TestMapperSync:
    """Test mapper channel synchronization."""

    def _publish(self, origin) -> None:
        lines = [
            "1135452",
            f"a.blk {compute_md5(b'aaa')}|3",
            f"x.pck {compute_md5(b'xxx')}|3",
            f"svc_catalog {compute_md5(b'svc')}|3",
            f"missing.blk {compute_md5(b'mmm')}|3",
        ]
        origin.add(f"{MAPPER_URL}/res_versions_external", "\n".join(lines).encode())
        origin.add(f"{MAPPER_URL}/base_revision", b"1135452 9")
        origin.add(f"{MAPPER_URL}/a.blk", b"aaa")
        origin.add(f"{MAPPER_URL}/AudioAssets/x.pck", b"xxx")
        origin.add(f"{MAPPER_URL}/svc_catalog", b"svc")

    def test_first_and_second_pass(self, temp_dir, origin, mapper_profile, make_downloader):
        """The first pass downloads, the second only refreshes mappers."""
        self._publish(origin)
        engine = SyncEngine(mapper_profile, temp_dir, make_downloader())

        report = engine.sync()

        assert report.counts[Outcome.DOWNLOADED] == 2
        assert report.counts[Outcome.NOT_FOUND] == 1
        assert report.ok
        assert (temp_dir / MAPPER_FOLDER / "a.blk").read_bytes() == b"aaa"
        assert (temp_dir / MAPPER_FOLDER / "AudioAssets" / "x.pck").read_bytes() == b"xxx"
        assert (temp_dir / MAPPER_FOLDER / "base_revision").exists()
        assert f"{MAPPER_URL}/svc_catalog" not in origin.requests

        ledger = json.loads(engine.ledger_path("1.0_live").read_text())
        assert ledger[f"{MAPPER_URL}/a.blk"] == compute_md5(b"aaa")
        assert ledger[f"{MAPPER_URL}/missing.blk"] == "not_found"

        origin.requests.clear()
        second = engine.sync(["1.0_live"])

        assert second.counts[Outcome.CACHED] == 2
        assert second.counts[Outcome.CACHED_ABSENT] == 1
        assert second.counts[Outcome.DOWNLOADED] == 0
        assert sorted(origin.requests) == [
            f"{MAPPER_URL}/base_revision",
            f"{MAPPER_URL}/res_versions_external",
        ]

    def test_failed_mapper_is_reported(self, temp_dir, origin, mapper_profile, make_downloader):
        """A mapper that cannot be fetched is skipped and reported."""
        self._publish(origin)
        del origin.files[f"{MAPPER_URL}/base_revision"]
        engine = SyncEngine(mapper_profile, temp_dir, make_downloader())

        report = engine.sync()

        assert report.failed_manifests == [f"{MAPPER_URL}/base_revision"]
        assert report.counts[Outcome.DOWNLOADED] == 2
        assert not report.ok

    def test_destination_clash_does_not_stop_pass(self, temp_dir, origin, mapper_profile, make_downloader):
        """A plain file named like a routing folder fails one resource, not the pass."""
        lines = [
            f"AudioAssets {compute_md5(b'audio')}|5",
            f"x.pck {compute_md5(b'xxx')}|3",
            f"z.blk {compute_md5(b'zzz')}|3",
        ]
        origin.add(f"{MAPPER_URL}/res_versions_external", "\n".join(lines).encode())
        origin.add(f"{MAPPER_URL}/base_revision", b"1")
        origin.add(f"{MAPPER_URL}/AudioAssets", b"audio")
        origin.add(f"{MAPPER_URL}/AudioAssets/x.pck", b"xxx")
        origin.add(f"{MAPPER_URL}/z.blk", b"zzz")
        engine = SyncEngine(mapper_profile, temp_dir, make_downloader())

        report = engine.sync()

        assert len(report.unresolved) == 1
        assert report.counts[Outcome.DOWNLOADED] == 2
        assert (temp_dir / MAPPER_FOLDER / "z.blk").read_bytes() == b"zzz"
        assert not report.ok

    def test_client_filter(self, temp_dir, origin, mapper_profile, make_downloader):
        """Clients outside the filter are not touched."""
        self._publish(origin)
        engine = SyncEngine(mapper_profile, temp_dir, make_downloader())

        report = engine.sync(clients=["client/Windows"])

        assert report.total == 0
        assert origin.requests == []

    def test_unknown_release(self, temp_dir, mapper_profile, make_downloader):
        """Test unknown release."""
        engine = SyncEngine(mapper_profile, temp_dir, make_downloader())
        with pytest.raises(ValueError, match="Unknown release"):
            engine.sync(["9.9_live"])

    def test_sub_folder(self, temp_dir, mapper_profile, make_downloader):
        """Extension routing is suppressed when the folder already names it."""
        engine = SyncEngine(mapper_profile, temp_dir, make_downloader())
        record = MapperRecord(remote_name="x.pck")

        assert engine.sub_folder(record, MAPPER_FOLDER) == "AudioAssets"
        assert engine.sub_folder(record, f"{MAPPER_FOLDER}/AudioAssets") == ""
        assert engine.sub_folder(MapperRecord(remote_name="a.blk"), MAPPER_FOLDER) == ""


class TestIndexedSync:
    """Test block, design and script channel synchronization."""

    asb_url = f"{BASE}/asb/V1.0Live/output_1_aa/client/Android"
    design_url = f"{BASE}/design_data/V1.0Live/output_2_bb/client/Android"
    lua_url = f"{BASE}/lua/V1.0Live/output_3_cc/client/Android"
    inherited_url = f"{BASE}/asb/V1.0Live/output_0_base/client/Android"

    def _file_index(self, content: bytes) -> bytes:
        entry = FileEntry(
            name_hash=1,
            content_hash=compute_md5(content),
            declared_size=len(content),
            sub_entries=[SubEntry(name_hash=2, size=len(content), offset=0)],
        )
        return FileIndexParser().build(FileIndex(files=[entry]))

    def _header(self) -> bytes:
        return ManifestHeaderParser().build(ManifestHeader(
            magic="MHDR",
            metadata_size=0,
            revision_id=1,
            index_hash=INDEX_HASH,
            asset_list_size=0,
            asset_list_timestamp=0,
        ))

    def _publish(self, origin) -> None:
        listing = json.dumps({
            "ContentHash": BLOCK_INDEX_HASH,
            "FileName": "M_BlockV",
            "BaseAssetsDownloadUrl": "output_0_base",
        })
        blocks = BlockIndex(entries=[
            BlockEntry(name_hash=compute_md5(BLOCK_A), asset_id=0x00100001, size=len(BLOCK_A), is_base_layer=True),
            BlockEntry(name_hash=compute_md5(BLOCK_B), asset_id=2, size=len(BLOCK_B), is_base_layer=False),
        ])
        origin.add(f"{self.asb_url}/Archive/M_ArchiveV.bytes", listing.encode())
        origin.add(f"{self.asb_url}/Block/BlockV_{BLOCK_INDEX_HASH}.bytes", BlockIndexParser().build(blocks))
        origin.add(f"{self.asb_url}/Block/{compute_md5(BLOCK_A)}.block", BLOCK_A)
        origin.add(f"{self.inherited_url}/Block/{compute_md5(BLOCK_B)}.block", BLOCK_B)

        origin.add(f"{self.design_url}/M_DesignV.bytes", self._header())
        origin.add(f"{self.design_url}/DesignV_{INDEX_HASH}.bytes", self._file_index(DESIGN_FILE))
        origin.add(f"{self.design_url}/{compute_md5(DESIGN_FILE)}.bytes", DESIGN_FILE)

        origin.add(f"{self.lua_url}/M_LuaV.bytes", self._header())
        origin.add(f"{self.lua_url}/LuaV_{INDEX_HASH}.bytes", self._file_index(SCRIPT_FILE))
        origin.add(f"{self.lua_url}/{compute_md5(SCRIPT_FILE)}.bytes", SCRIPT_FILE)

    def test_links_collected_and_downloaded(self, temp_dir, origin, indexed_profile, make_downloader):
        """Every manifest and listed file is mirrored and the links are saved."""
        self._publish(origin)
        engine = SyncEngine(indexed_profile, temp_dir, make_downloader())

        report = engine.sync(["V1.0Live"])

        assert report.ok
        assert report.counts[Outcome.DOWNLOADED] == 10

        manifest = LinkManifest.load(engine.links_path("V1.0Live", "client/Android"))
        assert manifest.block_links == [
            f"{self.asb_url}/Archive/M_ArchiveV.bytes",
            f"{self.asb_url}/Block/BlockV_{BLOCK_INDEX_HASH}.bytes",
            f"{self.asb_url}/Block/{compute_md5(BLOCK_A)}.block",
            f"{self.inherited_url}/Block/{compute_md5(BLOCK_B)}.block",
        ]
        assert manifest.design_links[-1] == f"{self.design_url}/{compute_md5(DESIGN_FILE)}.bytes"
        assert manifest.script_links[0] == f"{self.lua_url}/M_LuaV.bytes"

        local = temp_dir / "asb/V1.0Live/output_0_base/client/Android/Block" / f"{compute_md5(BLOCK_B)}.block"
        assert local.read_bytes() == BLOCK_B

    def test_second_pass_only_rechecks_manifests(self, temp_dir, origin, indexed_profile, make_downloader):
        """Hash-named files are cached while manifests are fetched again."""
        self._publish(origin)
        engine = SyncEngine(indexed_profile, temp_dir, make_downloader())
        engine.sync(["V1.0Live"])

        second = engine.sync(["V1.0Live"])

        assert second.counts[Outcome.CACHED] == 4
        assert second.counts[Outcome.DOWNLOADED] == 6

    def test_missing_header_reported(self, temp_dir, origin, indexed_profile, make_downloader):
        """A channel whose top-level manifest is missing is reported."""
        self._publish(origin)
        del origin.files[f"{self.design_url}/M_DesignV.bytes"]
        engine = SyncEngine(indexed_profile, temp_dir, make_downloader())

        report = engine.sync(["V1.0Live"])

        assert report.failed_manifests == [f"{self.design_url}/M_DesignV.bytes"]
        assert report.counts[Outcome.DOWNLOADED] == 7

    def test_corrupt_index_reported(self, temp_dir, origin, indexed_profile, make_downloader):
        """An index failing its invariants aborts that channel."""
        self._publish(origin)
        bad = FileIndex(files=[FileEntry(name_hash=1, content_hash=INDEX_HASH, declared_size=5)])
        origin.add(f"{self.lua_url}/LuaV_{INDEX_HASH}.bytes", FileIndexParser().build(bad))
        engine = SyncEngine(indexed_profile, temp_dir, make_downloader())

        report = engine.sync(["V1.0Live"])

        assert report.failed_manifests == [f"{self.lua_url}/LuaV_{INDEX_HASH}.bytes"]

    def test_resume(self, temp_dir, origin, indexed_profile, make_downloader):
        """A saved link manifest can be replayed."""
        self._publish(origin)
        links_file = temp_dir / "links.json"
        LinkManifest(design_links=[f"{self.design_url}/{compute_md5(DESIGN_FILE)}.bytes"]).save(links_file)
        engine = SyncEngine(indexed_profile, temp_dir / "mirror", make_downloader())

        report = engine.resume("V1.0Live", links_file)

        assert report.counts[Outcome.DOWNLOADED] == 1
        ledger = json.loads(engine.ledger_path("V1.0Live").read_text())
        assert list(ledger.values()) == [compute_md5(DESIGN_FILE)]


class TestLinkManifest:
    """Test LinkManifest."""

    def test_all_links_order_and_dedup(self):
        """Links are flattened block, script, design with duplicates removed."""
        manifest = LinkManifest(block_links=["b", "x"], design_links=["d", "x"], script_links=["s"])

        assert manifest.all_links() == ["b", "x", "s", "d"]
        assert len(manifest) == 4
        assert manifest.links_for(ChannelKind.SCRIPT) == ["s"]

    def test_mapper_kind_has_no_links(self):
        """Test mapper kind lookup."""
        with pytest.raises(ValueError):
            LinkManifest().links_for(ChannelKind.MAPPER)

    def test_save_load(self, temp_dir):
        """Test persistence format."""
        path = temp_dir / "links" / "client_Android.json"
        LinkManifest(block_links=["b"], design_links=["d"], script_links=["s"]).save(path)

        assert json.loads(path.read_text()) == {"block_links": ["b"], "design_links": ["d"], "script_links": ["s"]}
        assert LinkManifest.load(path) == LinkManifest(block_links=["b"], design_links=["d"], script_links=["s"])


class TestSyncReport:
    """Test SyncReport."""

    def test_record_and_merge(self):
        """Counts and unresolved URLs accumulate."""
        first = SyncReport()
        first.record(Outcome.DOWNLOADED, "a")
        second = SyncReport()
        second.record(Outcome.UNRESOLVED, "b")
        second.failed_manifests.append("m")

        first.merge(second)

        assert first.total == 2
        assert first.unresolved == ["b"]
        assert not first.ok
        data = first.to_dict()
        assert data["counts"]["downloaded"] == 1
        assert data["counts"]["cached"] == 0
        assert data["failed_manifests"] == ["m"]
