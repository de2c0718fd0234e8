"""Tests for SyncCoordinator — operation semantics, index cascades, serialization."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from vaultsync.errors import ContextNotFoundError, IndexBackendError, NotFoundError
from vaultsync.sync.context import WindowRegistry
from vaultsync.sync.coordinator import SyncCoordinator
from vaultsync.sync.rename import LiveWatchRename
from vaultsync.vault.events import (
    FileIndexedEvent,
    FileRemovedEvent,
    TreeRefreshEvent,
    VaultEventBus,
)
from vaultsync.vault.security import PathTraversalError
from vaultsync.vault.watcher import FileChange

if TYPE_CHECKING:
    from conftest import FakeIndex, FakeWatchConfig, FakeWatcher


WIN = "main"


def _coordinator(
    watcher: FakeWatcher,
    config: FakeWatchConfig,
    bus: VaultEventBus | None = None,
) -> SyncCoordinator:
    return SyncCoordinator(
        WindowRegistry(),
        watcher,  # type: ignore[arg-type]
        rename_strategy=LiveWatchRename(),
        event_bus=bus,
        watch_config=config,  # type: ignore[arg-type]
    )


@pytest.fixture
def coordinator(fake_watcher: FakeWatcher, watch_config: FakeWatchConfig) -> SyncCoordinator:
    return _coordinator(fake_watcher, watch_config)


# ---------------------------------------------------------------------------
# Lifecycle and context resolution
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_open_starts_watcher(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher
    ) -> None:
        context = await coordinator.open_vault(WIN, vault, fake_index)
        assert fake_watcher.calls == [("watch", vault)]
        assert context.watcher_handle is fake_watcher.live
        assert coordinator.registry.resolve(WIN) is context

    @pytest.mark.asyncio
    async def test_open_missing_vault(
        self, coordinator: SyncCoordinator, tmp_path: Path, fake_index: FakeIndex
    ) -> None:
        with pytest.raises(NotFoundError):
            await coordinator.open_vault(WIN, tmp_path / "nope", fake_index)

    @pytest.mark.asyncio
    async def test_reopen_replaces_binding(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher
    ) -> None:
        first = await coordinator.open_vault(WIN, vault, fake_index)
        second = await coordinator.open_vault(WIN, vault, fake_index)
        assert first is not second
        assert first.watcher_handle is None
        assert fake_watcher.handles[0].closed
        assert len([h for h in fake_watcher.handles if not h.closed]) == 1

    @pytest.mark.asyncio
    async def test_close_vault_releases_watcher(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        await coordinator.close_vault(WIN)
        assert fake_watcher.live is None
        assert coordinator.registry.find(WIN) is None

    @pytest.mark.asyncio
    async def test_unbound_window_is_fatal_for_index_operations(
        self, coordinator: SyncCoordinator, vault: Path
    ) -> None:
        for call in (
            coordinator.delete(WIN, vault / "a.md"),
            coordinator.rename(WIN, vault / "a.md", vault / "b.md"),
            coordinator.move(WIN, vault / "a", vault / "b"),
            coordinator.reindex(WIN, vault / "a.md"),
        ):
            with pytest.raises(ContextNotFoundError):
                await call

    @pytest.mark.asyncio
    async def test_list_tree_empty_when_unbound(self, coordinator: SyncCoordinator) -> None:
        assert await coordinator.list_tree(WIN) == []

    @pytest.mark.asyncio
    async def test_list_tree(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        (vault / "notes").mkdir()
        (vault / "notes" / "a.md").write_text("a")
        (vault / ".hidden").write_text("h")
        await coordinator.open_vault(WIN, vault, fake_index)
        tree = await coordinator.list_tree(WIN)
        assert [n.name for n in tree] == ["notes"]
        assert [c.name for c in tree[0].children] == ["a.md"]


# ---------------------------------------------------------------------------
# Plain file operations
# ---------------------------------------------------------------------------


class TestFileOperations:
    @pytest.mark.asyncio
    async def test_missing_path_does_not_exist_and_deletes_quietly(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        ghost = vault / "nowhere" / "ghost.md"
        assert await coordinator.exists(WIN, ghost) is False
        await coordinator.delete(WIN, ghost)
        assert fake_index.calls_named("delete_by_paths") == []

    @pytest.mark.asyncio
    async def test_exists_without_vault(self, coordinator: SyncCoordinator, vault: Path) -> None:
        (vault / "x.md").write_text("x")
        assert await coordinator.exists("other", vault / "x.md") is True
        assert await coordinator.exists("other", vault / "y.md") is False

    @pytest.mark.asyncio
    async def test_create_file_recursive(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        target = vault / "a" / "b" / "c.md"
        await coordinator.create_file(WIN, target, "made")
        assert await coordinator.read_file(WIN, target) == "made"
        assert await coordinator.is_directory(WIN, vault / "a" / "b")
        assert not await coordinator.is_directory(WIN, target)

    @pytest.mark.asyncio
    async def test_write_read_roundtrip(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        content = "# Título\n\nmulti\r\nline ✓ 漢字 🙂\n"
        target = vault / "new" / "note.md"
        await coordinator.write_file(WIN, target, content)
        assert await coordinator.read_file(WIN, target) == content

    @pytest.mark.asyncio
    async def test_read_missing_raises_not_found(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        with pytest.raises(NotFoundError):
            await coordinator.read_file(WIN, vault / "missing.md")

    @pytest.mark.asyncio
    async def test_create_directory_idempotent(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        await coordinator.create_directory(WIN, vault / "d" / "e")
        await coordinator.create_directory(WIN, vault / "d" / "e")
        assert (vault / "d" / "e").is_dir()

    @pytest.mark.asyncio
    async def test_list_directory(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        (vault / "a.md").write_text("a")
        (vault / ".git").mkdir()
        (vault / "sub").mkdir()
        (vault / "sub" / "inner.md").write_text("i")
        await coordinator.open_vault(WIN, vault, fake_index)
        assert await coordinator.list_directory(WIN, vault) == ["a.md", "sub"]

    @pytest.mark.asyncio
    async def test_relative_paths_resolve_inside_vault(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        await coordinator.write_file(WIN, "rel/note.md", "hi")
        assert (vault / "rel" / "note.md").read_text() == "hi"
        assert await coordinator.exists(WIN, "rel/note.md")

    @pytest.mark.asyncio
    async def test_traversal_rejected(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        (vault / "a.md").write_text("a")
        await coordinator.open_vault(WIN, vault, fake_index)
        with pytest.raises(PathTraversalError):
            await coordinator.rename(WIN, vault / "a.md", "../escaped.md")
        assert (vault / "a.md").exists()


# ---------------------------------------------------------------------------
# Reindex
# ---------------------------------------------------------------------------


class TestReindex:
    @pytest.mark.asyncio
    async def test_reindex_idempotent(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        note = vault / "note.md"
        note.write_text("# One\n\nfirst\n\n# Two\n\nsecond")
        await coordinator.open_vault(WIN, vault, fake_index)

        await coordinator.reindex(WIN, note)
        first = await fake_index.entries_for(note)
        await coordinator.reindex(WIN, note)
        second = await fake_index.entries_for(note)

        assert len(first) == 2
        assert first == second

    @pytest.mark.asyncio
    async def test_reindex_missing_file(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        with pytest.raises(NotFoundError):
            await coordinator.reindex(WIN, vault / "gone.md")

    @pytest.mark.asyncio
    async def test_reindex_publishes_event(
        self, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher, watch_config: FakeWatchConfig
    ) -> None:
        bus = VaultEventBus()
        events: list[FileIndexedEvent] = []

        async def capture(event: FileIndexedEvent) -> None:
            events.append(event)

        bus.subscribe(FileIndexedEvent, capture)  # type: ignore[arg-type]
        coordinator = _coordinator(fake_watcher, watch_config, bus)
        (vault / "n.md").write_text("body")
        await coordinator.open_vault(WIN, vault, fake_index)
        await coordinator.reindex(WIN, vault / "n.md")

        assert len(events) == 1
        assert events[0].window_id == WIN
        assert events[0].entries == 1

    @pytest.mark.asyncio
    async def test_index_failure_surfaces(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        (vault / "n.md").write_text("body")
        await coordinator.open_vault(WIN, vault, fake_index)
        fake_index.fail = True
        with pytest.raises(IndexBackendError):
            await coordinator.reindex(WIN, vault / "n.md")


# ---------------------------------------------------------------------------
# Rename / move / delete cascades
# ---------------------------------------------------------------------------


class TestRename:
    @pytest.mark.asyncio
    async def test_rename_scenario(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        notes = vault / "notes"
        notes.mkdir()
        old, new = notes / "a.md", notes / "b.md"
        old.write_text("hello")
        await coordinator.open_vault(WIN, vault, fake_index)
        await coordinator.reindex(WIN, old)
        before = await fake_index.entries_for(old)

        await coordinator.rename(WIN, old, new)

        assert await coordinator.exists(WIN, old) is False
        assert await coordinator.read_file(WIN, new) == "hello"
        assert await fake_index.entries_for(old) == []
        after = await fake_index.entries_for(new)
        assert [(e.chunk_idx, e.content) for e in after] == [
            (e.chunk_idx, e.content) for e in before
        ]
        assert all(e.file_path == str(new) for e in after)

    @pytest.mark.asyncio
    async def test_rename_preserves_chunk_order(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        old, new = vault / "long.md", vault / "renamed.md"
        old.write_text("\n\n".join(f"# H{i}\n\npara {i}" for i in range(5)))
        await coordinator.open_vault(WIN, vault, fake_index)
        await coordinator.reindex(WIN, old)
        before = [e.content for e in await fake_index.entries_for(old)]

        await coordinator.rename(WIN, old, new)

        assert [e.content for e in await fake_index.entries_for(new)] == before

    @pytest.mark.asyncio
    async def test_rename_directory_moves_nested_entries(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        (vault / "dir" / "sub").mkdir(parents=True)
        (vault / "dir" / "sub" / "n.md").write_text("nested")
        await coordinator.open_vault(WIN, vault, fake_index)
        await coordinator.reindex(WIN, vault / "dir" / "sub" / "n.md")

        await coordinator.rename(WIN, vault / "dir", vault / "renamed")

        assert await fake_index.entries_for(vault / "dir" / "sub" / "n.md") == []
        moved = await fake_index.entries_for(vault / "renamed" / "sub" / "n.md")
        assert [e.content for e in moved] == ["nested"]

    @pytest.mark.asyncio
    async def test_failed_rename_leaves_index_untouched(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        with pytest.raises(FileNotFoundError):
            await coordinator.rename(WIN, vault / "missing.md", vault / "other.md")
        assert fake_index.calls_named("move_entries") == []


class TestMove:
    @pytest.mark.asyncio
    async def test_directory_move_cascades(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher
    ) -> None:
        dir_a, dir_b = vault / "dirA", vault / "dirB"
        (dir_a / "sub").mkdir(parents=True)
        (dir_a / "x").write_text("x content")
        (dir_a / "sub" / "y").write_text("y content")
        await coordinator.open_vault(WIN, vault, fake_index)
        await coordinator.reindex(WIN, dir_a / "x")
        await coordinator.reindex(WIN, dir_a / "sub" / "y")

        # The UI performs the filesystem move first
        dir_a.rename(dir_b)
        watcher_calls = list(fake_watcher.calls)
        await coordinator.move(WIN, dir_a, dir_b)

        assert [e.content for e in await fake_index.entries_for(dir_b / "x")] == ["x content"]
        assert [e.content for e in await fake_index.entries_for(dir_b / "sub" / "y")] == ["y content"]
        assert not any(key.startswith(str(dir_a) + "/") for key in fake_index.entries)
        assert fake_index.calls_named("orchestrate_move") == [(dir_a, dir_b)]
        # Moves never touch the watcher
        assert fake_watcher.calls == watcher_calls

    @pytest.mark.asyncio
    async def test_sibling_prefix_not_moved(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        (vault / "dir").mkdir()
        (vault / "dir2").mkdir()
        (vault / "dir2" / "keep.md").write_text("keep")
        await coordinator.open_vault(WIN, vault, fake_index)
        await coordinator.reindex(WIN, vault / "dir2" / "keep.md")

        await coordinator.move(WIN, vault / "dir", vault / "moved")

        assert len(await fake_index.entries_for(vault / "dir2" / "keep.md")) == 1


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_directory_removes_contained_paths(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        sub = vault / "sub"
        sub.mkdir()
        (sub / "one.md").write_text("1")
        (sub / "two.md").write_text("2")
        await coordinator.open_vault(WIN, vault, fake_index)

        await coordinator.delete(WIN, sub)

        assert await coordinator.exists(WIN, sub) is False
        calls = fake_index.calls_named("delete_by_paths")
        assert len(calls) == 1
        assert set(calls[0]) == {sub / "one.md", sub / "two.md"}  # type: ignore[arg-type]
        assert sub not in calls[0]  # type: ignore[operator]

    @pytest.mark.asyncio
    async def test_delete_file(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        note = vault / "n.md"
        note.write_text("bye")
        await coordinator.open_vault(WIN, vault, fake_index)
        await coordinator.reindex(WIN, note)

        await coordinator.delete(WIN, note)

        assert not note.exists()
        assert fake_index.calls_named("delete_by_paths") == [[note]]
        assert await fake_index.entries_for(note) == []

    @pytest.mark.asyncio
    async def test_delete_twice_is_idempotent(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        note = vault / "n.md"
        note.write_text("x")
        await coordinator.open_vault(WIN, vault, fake_index)
        await coordinator.delete(WIN, note)
        await coordinator.delete(WIN, note)
        assert len(fake_index.calls_named("delete_by_paths")) == 1

    @pytest.mark.asyncio
    async def test_index_failure_does_not_restore_file(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        note = vault / "n.md"
        note.write_text("x")
        await coordinator.open_vault(WIN, vault, fake_index)
        fake_index.fail = True
        with pytest.raises(IndexBackendError):
            await coordinator.delete(WIN, note)
        assert not note.exists()

    @pytest.mark.asyncio
    async def test_delete_publishes_removed_event(
        self, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher, watch_config: FakeWatchConfig
    ) -> None:
        bus = VaultEventBus()
        events: list[FileRemovedEvent] = []

        async def capture(event: FileRemovedEvent) -> None:
            events.append(event)

        bus.subscribe(FileRemovedEvent, capture)  # type: ignore[arg-type]
        coordinator = _coordinator(fake_watcher, watch_config, bus)
        (vault / "n.md").write_text("x")
        await coordinator.open_vault(WIN, vault, fake_index)
        await coordinator.delete(WIN, vault / "n.md")

        assert [e.paths for e in events] == [(vault / "n.md",)]


class TestBulkConvert:
    @pytest.mark.asyncio
    async def test_paths_as_entries(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        (vault / "d").mkdir()
        (vault / "d" / "a.md").write_text("a")
        (vault / "b.md").write_text("b")
        await coordinator.open_vault(WIN, vault, fake_index)

        entries = await coordinator.paths_as_entries(WIN, [vault / "d", vault / "b.md"])

        assert {e.file_path for e in entries} == {str(vault / "d" / "a.md"), str(vault / "b.md")}
        # Converting does not store anything
        assert fake_index.entries == {}


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


class TestSerialization:
    @pytest.mark.asyncio
    async def test_operations_on_one_vault_do_not_interleave(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex
    ) -> None:
        log: list[str] = []
        original = fake_index.move_entries

        async def slow_move(old: Path, new: Path) -> int:
            log.append(f"start {old.name}")
            await asyncio.sleep(0.02)
            log.append(f"end {old.name}")
            return await original(old, new)

        fake_index.move_entries = slow_move  # type: ignore[method-assign]
        (vault / "a.md").write_text("a")
        (vault / "b.md").write_text("b")
        await coordinator.open_vault(WIN, vault, fake_index)

        await asyncio.gather(
            coordinator.rename(WIN, vault / "a.md", vault / "a2.md"),
            coordinator.rename(WIN, vault / "b.md", vault / "b2.md"),
        )

        assert log in (
            ["start a.md", "end a.md", "start b.md", "end b.md"],
            ["start b.md", "end b.md", "start a.md", "end a.md"],
        )

    @pytest.mark.asyncio
    async def test_vaults_are_independent(
        self, coordinator: SyncCoordinator, tmp_path: Path, fake_index: FakeIndex
    ) -> None:
        vault_a = tmp_path / "a"
        vault_b = tmp_path / "b"
        vault_a.mkdir()
        vault_b.mkdir()
        (vault_b / "n.md").write_text("n")
        context_a = await coordinator.open_vault("a", vault_a, fake_index)
        await coordinator.open_vault("b", vault_b, fake_index)

        async with context_a.lock:
            # Vault "a" is busy; vault "b" must still make progress
            await asyncio.wait_for(coordinator.reindex("b", vault_b / "n.md"), timeout=1.0)


# ---------------------------------------------------------------------------
# Watcher-originated changes
# ---------------------------------------------------------------------------


class TestWatcherChanges:
    @pytest.mark.asyncio
    async def test_duplicate_notifications_do_not_duplicate_entries(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        note = vault / "note.md"
        note.write_text("unchanged")

        fake_watcher.emit(FileChange(note, "created"))
        await asyncio.sleep(0.1)
        fake_watcher.emit(FileChange(note, "modified"))
        fake_watcher.emit(FileChange(note, "modified"))
        await asyncio.sleep(0.1)

        assert len(await fake_index.entries_for(note)) == 1
        assert len(fake_index.calls_named("upsert")) == 1

    @pytest.mark.asyncio
    async def test_external_edit_reindexes(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        note = vault / "note.md"
        note.write_text("v1")
        fake_watcher.emit(FileChange(note, "created"))
        await asyncio.sleep(0.1)
        note.write_text("v2")
        fake_watcher.emit(FileChange(note, "modified"))
        await asyncio.sleep(0.1)

        assert [e.content for e in await fake_index.entries_for(note)] == ["v2"]

    @pytest.mark.asyncio
    async def test_explicit_reindex_suppresses_watcher_repeat(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        note = vault / "note.md"
        note.write_text("same")
        await coordinator.reindex(WIN, note)

        fake_watcher.emit(FileChange(note, "modified"))
        await asyncio.sleep(0.1)

        assert len(fake_index.calls_named("upsert")) == 1

    @pytest.mark.asyncio
    async def test_external_delete_removes_entries(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        note = vault / "note.md"
        note.write_text("doomed")
        await coordinator.reindex(WIN, note)

        note.unlink()
        fake_watcher.emit(FileChange(note, "deleted"))
        await asyncio.sleep(0.1)

        assert await fake_index.entries_for(note) == []

    @pytest.mark.asyncio
    async def test_external_directory_delete_sweeps_prefix(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher
    ) -> None:
        sub = vault / "sub"
        sub.mkdir()
        (sub / "a.md").write_text("a")
        (sub / "b.md").write_text("b")
        await coordinator.open_vault(WIN, vault, fake_index)
        await coordinator.reindex(WIN, sub / "a.md")
        await coordinator.reindex(WIN, sub / "b.md")

        for f in sub.iterdir():
            f.unlink()
        sub.rmdir()
        fake_watcher.emit(FileChange(sub, "deleted", is_directory=True))
        await asyncio.sleep(0.1)

        assert fake_index.entries == {}

    @pytest.mark.asyncio
    async def test_external_move_relocates_entries(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        old, new = vault / "a.md", vault / "b.md"
        old.write_text("moving")
        await coordinator.reindex(WIN, old)

        old.rename(new)
        fake_watcher.emit(FileChange(old, "moved", dest_path=new))
        await asyncio.sleep(0.1)

        assert await fake_index.entries_for(old) == []
        assert [e.content for e in await fake_index.entries_for(new)] == ["moving"]

    @pytest.mark.asyncio
    async def test_notification_for_in_flight_path_ignored(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher
    ) -> None:
        context = await coordinator.open_vault(WIN, vault, fake_index)
        note = vault / "busy.md"
        note.write_text("x")

        with context.operating_on(note):
            fake_watcher.emit(FileChange(note, "modified"))
        assert context.watch_handler is not None
        assert context.watch_handler.pending_count == 0

        await asyncio.sleep(0.1)
        assert fake_index.calls_named("upsert") == []

    @pytest.mark.asyncio
    async def test_change_triggers_tree_refresh(
        self, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher, watch_config: FakeWatchConfig
    ) -> None:
        bus = VaultEventBus()
        refreshes: list[TreeRefreshEvent] = []

        async def capture(event: TreeRefreshEvent) -> None:
            refreshes.append(event)

        bus.subscribe(TreeRefreshEvent, capture)  # type: ignore[arg-type]
        coordinator = _coordinator(fake_watcher, watch_config, bus)
        await coordinator.open_vault(WIN, vault, fake_index)
        note = vault / "fresh.md"
        note.write_text("x")

        fake_watcher.emit(FileChange(note, "created"))
        fake_watcher.emit(FileChange(note, "modified"))
        await asyncio.sleep(0.1)

        assert len(refreshes) == 1
        assert [n.name for n in refreshes[0].tree] == ["fresh.md"]

    @pytest.mark.asyncio
    async def test_closed_vault_ignores_late_events(
        self, coordinator: SyncCoordinator, vault: Path, fake_index: FakeIndex, fake_watcher: FakeWatcher
    ) -> None:
        await coordinator.open_vault(WIN, vault, fake_index)
        handle = fake_watcher.live
        assert handle is not None
        note = vault / "late.md"
        note.write_text("x")
        handle.callback(FileChange(note, "created"))
        await coordinator.close_vault(WIN)
        await asyncio.sleep(0.1)

        assert fake_index.calls_named("upsert") == []
