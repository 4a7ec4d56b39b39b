"""Synchronization engine: mirror a game release into a local tree.

For every version group of a release the engine enumerates remote resources
(through mapper files, the block archive listing, or the design/script
indices), then resolves each resource in turn:

    unknown -> cached (ledger hash matches) | cached absent (ledger not_found)
            -> verified (file on disk matches)
            -> downloading -> downloaded | not found | unresolved

A resource is fully resolved, including the ledger flush, before the next one
starts. Unresolved resources get no ledger entry and are retried on the next
pass.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import structlog

from hotfix_tools.core.config import SyncConfig
from hotfix_tools.core.downloader import (
    Downloader,
    FetchError,
    RemoteNotFoundError,
    TransientFetchError,
)
from hotfix_tools.core.games import Channel, GameProfile, VersionGroup
from hotfix_tools.core.integrity import IntegrityError, file_matches, verify_file
from hotfix_tools.core.ledger import CacheEntry, EntryState, Ledger
from hotfix_tools.core.types import ChannelKind, Outcome, Resource, VersionSpec
from hotfix_tools.core.utils import extract_md5
from hotfix_tools.formats.block_index import BlockIndexParser
from hotfix_tools.formats.file_index import DesignIndexParser, FileIndexParser, ScriptIndexParser
from hotfix_tools.formats.header import ManifestHeaderParser
from hotfix_tools.formats.mapper import MapperRecord, parse_archive_listing, parse_mapper

logger = structlog.get_logger()

ARCHIVE_LISTING = "Archive/M_ArchiveV.bytes"

# kind -> (header file, index blob prefix, parser type)
INDEXED_LAYOUTS: dict[ChannelKind, tuple[str, str, type[FileIndexParser]]] = {
    ChannelKind.DESIGN: ("M_DesignV.bytes", "DesignV", DesignIndexParser),
    ChannelKind.SCRIPT: ("M_LuaV.bytes", "LuaV", ScriptIndexParser),
}


class ManifestError(Exception):
    """An enumerating manifest could not be fetched or decoded."""

    def __init__(self, message: str, *, url: str):
        self.url = url
        super().__init__(message)


@dataclass
class LinkManifest:
    """Flattened remote URLs of one release and client, grouped by channel kind."""

    block_links: list[str] = field(default_factory=list)
    design_links: list[str] = field(default_factory=list)
    script_links: list[str] = field(default_factory=list)

    def links_for(self, kind: ChannelKind) -> list[str]:
        if kind is ChannelKind.BLOCK:
            return self.block_links
        if kind is ChannelKind.DESIGN:
            return self.design_links
        if kind is ChannelKind.SCRIPT:
            return self.script_links
        raise ValueError(f"Channel kind {kind} has no link list")

    def all_links(self) -> list[str]:
        """Every link once, in block, script, design order."""
        return list(dict.fromkeys(self.block_links + self.script_links + self.design_links))

    def __len__(self) -> int:
        return len(self.all_links())

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "block_links": self.block_links,
            "design_links": self.design_links,
            "script_links": self.script_links,
        }
        temp_path = path.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        temp_path.replace(path)

    @classmethod
    def load(cls, path: Path) -> LinkManifest:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return cls(
            block_links=list(data.get("block_links", [])),
            design_links=list(data.get("design_links", [])),
            script_links=list(data.get("script_links", [])),
        )


@dataclass
class SyncReport:
    """Outcome counts of a sync pass."""

    counts: Counter[Outcome] = field(default_factory=Counter)
    unresolved: list[str] = field(default_factory=list)
    failed_manifests: list[str] = field(default_factory=list)

    def record(self, outcome: Outcome, url: str) -> None:
        self.counts[outcome] += 1
        if outcome is Outcome.UNRESOLVED:
            self.unresolved.append(url)

    def merge(self, other: SyncReport) -> None:
        self.counts.update(other.counts)
        self.unresolved.extend(other.unresolved)
        self.failed_manifests.extend(other.failed_manifests)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def ok(self) -> bool:
        return not self.unresolved and not self.failed_manifests

    def to_dict(self) -> dict[str, object]:
        return {
            "counts": {outcome.value: self.counts.get(outcome, 0) for outcome in Outcome},
            "unresolved": self.unresolved,
            "failed_manifests": self.failed_manifests,
        }


class SyncEngine:
    """Mirrors the releases of one game.

    Args:
        profile: Game profile (origin, channels, folder rules)
        root: Local mirror root of the game
        downloader: HTTP downloader
        config: Sync configuration, defaults to the downloader's
    """

    def __init__(
        self,
        profile: GameProfile,
        root: Path,
        downloader: Downloader,
        config: SyncConfig | None = None,
    ):
        self.profile = profile
        self.root = root
        self.downloader = downloader
        self.config = config or downloader.config
        self.base_url = profile.base_url.rstrip("/")

    # -- paths -----------------------------------------------------------

    def ledger_path(self, release: str) -> Path:
        return self.root / "md5" / f"{release}.json"

    def links_path(self, release: str, client: str) -> Path:
        return self.root / "links" / release / f"{client.replace('/', '_')}.json"

    def output_folder(self, channel: Channel, release: str, spec: VersionSpec, client: str) -> str:
        """Remote folder of one channel output, relative to the origin."""
        return f"{channel.mode}/{release}/{spec.folder}/{client}"

    def relative_path(self, url: str) -> str:
        """Local path of a URL, relative to the mirror root."""
        prefix = self.base_url + "/"
        if url.startswith(prefix):
            return url[len(prefix):]
        return urlparse(url).path.lstrip("/")

    def sub_folder(self, record: MapperRecord, folder: str) -> str:
        """Extension-routed sub-folder of a mapper record, suppressed if already in ``folder``."""
        extension = record.extension
        for name, extensions in self.profile.folder_rules.items():
            if extension in extensions:
                return "" if name in folder else name
        return ""

    def _local(self, relative: str) -> Path | None:
        parts = PurePosixPath(relative).parts
        if not parts or ".." in parts or PurePosixPath(relative).is_absolute():
            return None
        return self.root.joinpath(*parts)

    # -- passes ----------------------------------------------------------

    def sync(self, releases: list[str] | None = None, clients: list[str] | None = None) -> SyncReport:
        """Sync the given releases (all known releases when None)."""
        report = SyncReport()
        for release in releases or list(self.profile.releases):
            groups = self.profile.releases.get(release)
            if groups is None:
                raise ValueError(f"Unknown release for {self.profile.name}: {release}")
            report.merge(self.sync_release(release, groups, clients))
        return report

    def sync_release(
        self,
        release: str,
        groups: list[VersionGroup],
        clients: list[str] | None = None,
    ) -> SyncReport:
        """Sync one release, version group by version group.

        Args:
            release: Release name, e.g. ``1.0_live``
            groups: Ascending version groups (channel key -> version)
            clients: Optional client filter
        """
        report = SyncReport()
        ledger = Ledger.load(self.ledger_path(release))
        log = logger.bind(game=self.profile.name, release=release)

        for group_index, group in enumerate(groups):
            manifests: dict[str, LinkManifest] = {}

            for key, spec in group.items():
                channel = self.profile.channels.get(key)
                if channel is None:
                    log.warning("unknown_channel", channel=key)
                    continue

                for client in channel.clients:
                    if clients and client not in clients:
                        continue
                    log.info("channel_start", group=group_index, channel=key, client=client, version=spec.version)

                    if channel.kind is ChannelKind.MAPPER:
                        self._sync_mappers(ledger, channel, release, spec, client, report)
                        continue

                    manifest = manifests.setdefault(client, LinkManifest())
                    try:
                        links = self.collect_links(channel, release, spec, client, report)
                    except ManifestError as e:
                        log.error("manifest_failed", url=e.url, error=str(e))
                        report.failed_manifests.append(e.url)
                        continue
                    manifest.links_for(channel.kind).extend(links)

            for client, manifest in manifests.items():
                path = self.links_path(release, client)
                manifest.save(path)
                log.info(
                    "links_saved",
                    path=str(path),
                    blocks=len(manifest.block_links),
                    design=len(manifest.design_links),
                    scripts=len(manifest.script_links),
                )
                self.download_links(ledger, manifest.all_links(), report)

        log.info("release_done", counts=report.to_dict()["counts"], unresolved=len(report.unresolved))
        return report

    def resume(self, release: str, links_file: Path) -> SyncReport:
        """Re-run the download cycle over a saved link manifest."""
        report = SyncReport()
        ledger = Ledger.load(self.ledger_path(release))
        manifest = LinkManifest.load(links_file)
        logger.info("resume_start", release=release, path=str(links_file), links=len(manifest))
        self.download_links(ledger, manifest.all_links(), report)
        return report

    def download_links(self, ledger: Ledger, links: list[str], report: SyncReport) -> None:
        """Resolve flattened links; expected hashes come from the URLs themselves."""
        for url in links:
            resource = Resource(url=url, path=self.relative_path(url), md5=extract_md5(url) or "")
            report.record(self.resolve(ledger, resource), url)

    # -- mapper channels -------------------------------------------------

    def _sync_mappers(
        self,
        ledger: Ledger,
        channel: Channel,
        release: str,
        spec: VersionSpec,
        client: str,
        report: SyncReport,
    ) -> None:
        folder = self.output_folder(channel, release, spec, client)

        for mapper in channel.mappers:
            mapper_url = f"{self.base_url}/{folder}/{mapper}"
            mapper_path = self._local(f"{folder}/{mapper}")
            if mapper_path is None:
                report.failed_manifests.append(mapper_url)
                continue

            # Mappers are small and always refreshed.
            try:
                self.downloader.fetch_to_file(mapper_url, mapper_path)
            except (FetchError, OSError) as e:
                logger.error("mapper_download_failed", url=mapper_url, error=str(e))
                report.failed_manifests.append(mapper_url)
                continue

            if mapper in channel.metadata_files:
                logger.debug("mapper_metadata_only", url=mapper_url)
                continue

            try:
                records = parse_mapper(mapper_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.error("mapper_parse_failed", url=mapper_url, error=str(e))
                report.failed_manifests.append(mapper_url)
                continue

            logger.info("mapper_expanded", url=mapper_url, records=len(records))
            for record in records:
                if record.remote_name in channel.skip_names:
                    continue
                relative = "/".join(
                    part for part in (folder, self.sub_folder(record, folder), record.remote_name) if part
                )
                resource = Resource(url=f"{self.base_url}/{relative}", path=relative, md5=record.md5)
                report.record(self.resolve(ledger, resource), resource.url)

    # -- indexed channels ------------------------------------------------

    def collect_links(
        self,
        channel: Channel,
        release: str,
        spec: VersionSpec,
        client: str,
        report: SyncReport,
    ) -> list[str]:
        """Enumerate the URLs of a block, design or script channel.

        Raises:
            ManifestError: If the top-level manifest cannot be fetched or decoded
        """
        folder_url = f"{self.base_url}/{self.output_folder(channel, release, spec, client)}"
        if channel.kind is ChannelKind.BLOCK:
            return self._collect_blocks(channel, release, client, folder_url, report)
        return self._collect_indexed(channel, folder_url)

    def _fetch_manifest(self, url: str) -> bytes:
        try:
            return self.downloader.fetch_bytes(url)
        except FetchError as e:
            raise ManifestError(f"Cannot fetch {url}: {e}", url=url) from e

    def _collect_blocks(
        self,
        channel: Channel,
        release: str,
        client: str,
        folder_url: str,
        report: SyncReport,
    ) -> list[str]:
        listing_url = f"{folder_url}/{ARCHIVE_LISTING}"
        try:
            records = parse_archive_listing(self._fetch_manifest(listing_url).decode("utf-8"))
        except ValueError as e:
            raise ManifestError(f"Cannot decode {listing_url}: {e}", url=listing_url) from e

        links = [listing_url]
        parser = BlockIndexParser(swap=channel.byte_swap)
        base_assets = ""

        for record in records:
            if not record.is_block_index:
                continue
            if record.base_assets_download_url:
                base_assets = record.base_assets_download_url

            index_url = f"{folder_url}/Block/BlockV_{record.content_hash}.bytes"
            try:
                index = parser.parse(self._fetch_manifest(index_url))
            except (ManifestError, ValueError) as e:
                logger.error("block_index_failed", url=index_url, error=str(e))
                report.failed_manifests.append(index_url)
                continue

            links.append(index_url)
            for block in index.entries:
                if block.is_base_layer or not base_assets:
                    links.append(f"{folder_url}/Block/{block.file_name}")
                else:
                    links.append(
                        f"{self.base_url}/{channel.mode}/{release}/{base_assets}/{client}/Block/{block.file_name}"
                    )

            logger.info("block_index_expanded", url=index_url, blocks=index.count)

        return links

    def _collect_indexed(self, channel: Channel, folder_url: str) -> list[str]:
        header_name, prefix, parser_type = INDEXED_LAYOUTS[channel.kind]
        header_url = f"{folder_url}/{header_name}"

        try:
            header = ManifestHeaderParser().parse(self._fetch_manifest(header_url))
        except ValueError as e:
            raise ManifestError(f"Cannot decode {header_url}: {e}", url=header_url) from e
        logger.info("manifest_header", url=header_url, revision=header.revision_id, index_hash=header.index_hash)

        index_url = f"{folder_url}/{prefix}_{header.index_hash}.bytes"
        try:
            index = parser_type(swap=channel.byte_swap).parse(self._fetch_manifest(index_url))
        except ValueError as e:
            raise ManifestError(f"Cannot decode {index_url}: {e}", url=index_url) from e

        links = [header_url, index_url]
        links.extend(f"{folder_url}/{entry.file_name}" for entry in index.files)
        logger.info("file_index_expanded", url=index_url, kind=channel.kind.value, files=index.file_count)
        return links

    # -- per-resource resolution -----------------------------------------

    def resolve(self, ledger: Ledger, resource: Resource) -> Outcome:
        """Bring one resource to a terminal state for this pass."""
        url, md5 = resource.url, resource.md5.lower()
        log = logger.bind(url=url)

        entry = ledger.get(url)
        if entry is not None:
            if entry.matches(md5):
                log.debug("skip_cached", md5=md5)
                return Outcome.CACHED
            if entry.state is EntryState.NOT_FOUND:
                log.debug("skip_cached_absent")
                return Outcome.CACHED_ABSENT
        elif md5 and self.config.reuse_across_versions:
            found = ledger.find_equivalent(url, md5)
            if found is not None:
                other_url, other = found
                if other.matches(md5):
                    log.debug("skip_cached_other_version", other=other_url)
                    return Outcome.CACHED
                if other.state is EntryState.NOT_FOUND:
                    log.debug("skip_absent_other_version", other=other_url)
                    return Outcome.CACHED_ABSENT

        local = self._local(resource.path)
        if local is None:
            log.error("unsafe_path", path=resource.path)
            return Outcome.UNRESOLVED

        if md5 and file_matches(local, md5):
            log.info("verified_on_disk", path=str(local))
            ledger.put(url, CacheEntry.confirmed(md5))
            return Outcome.VERIFIED

        # One download plus at most one re-download on an integrity mismatch.
        for cycle in range(2):
            try:
                self.downloader.fetch_to_file(url, local)
            except RemoteNotFoundError:
                ledger.put(url, CacheEntry.not_found())
                return Outcome.NOT_FOUND
            except TransientFetchError as e:
                log.error("unresolved_fetch", error=str(e))
                return Outcome.UNRESOLVED
            except OSError as e:
                log.error("unresolved_destination", path=str(local), error=str(e))
                return Outcome.UNRESOLVED

            if not md5:
                log.info("downloaded_without_md5", path=str(local))
                ledger.put(url, CacheEntry.always_recheck())
                return Outcome.DOWNLOADED

            try:
                verify_file(local, md5)
            except IntegrityError as e:
                log.warning("integrity_mismatch", cycle=cycle, expected=e.expected, actual=e.actual)
                continue

            log.info("downloaded_and_verified", path=str(local))
            ledger.put(url, CacheEntry.confirmed(md5))
            return Outcome.DOWNLOADED

        log.error("unresolved_integrity", expected=md5)
        return Outcome.UNRESOLVED
