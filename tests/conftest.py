"""Shared fakes for the sync engine tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest

from vaultsync.errors import IndexBackendError
from vaultsync.indexer.chunker import Chunker
from vaultsync.vault.models import IndexEntry
from vaultsync.vault.paths import file_infos_for_paths
from vaultsync.vault.watcher import FileChange


class FakeIndex:
    """In-memory IndexClient recording every call."""

    def __init__(self) -> None:
        self.entries: dict[str, list[IndexEntry]] = {}
        self.calls: list[tuple[str, object]] = []
        self.fail = False
        self._chunker = Chunker(max_tokens=50)

    def _check(self) -> None:
        if self.fail:
            raise IndexBackendError("backend down")

    async def upsert(self, path: Path, content: str) -> int:
        self.calls.append(("upsert", path))
        self._check()
        chunks = self._chunker.chunk(path, content)
        self.entries.pop(str(path), None)
        if chunks:
            self.entries[str(path)] = chunks
        return len(chunks)

    async def delete_by_paths(self, paths: list[Path]) -> int:
        self.calls.append(("delete_by_paths", list(paths)))
        self._check()
        return sum(len(self.entries.pop(str(p), [])) for p in paths)

    async def delete_under(self, root: Path) -> list[Path]:
        self.calls.append(("delete_under", root))
        self._check()
        removed = sorted(Path(key) for key in self.entries if Path(key).is_relative_to(root))
        for path in removed:
            del self.entries[str(path)]
        return removed

    async def move_entries(self, old_path: Path, new_path: Path) -> int:
        self.calls.append(("move_entries", (old_path, new_path)))
        self._check()
        return self._relocate(str(old_path), str(new_path))

    async def orchestrate_move(self, source: Path, destination: Path) -> int:
        self.calls.append(("orchestrate_move", (source, destination)))
        self._check()
        return self._relocate(str(source), str(destination))

    async def bulk_convert(self, paths: list[Path]) -> list[IndexEntry]:
        self.calls.append(("bulk_convert", list(paths)))
        out: list[IndexEntry] = []
        for node in file_infos_for_paths(paths):
            out.extend(self._chunker.chunk(node.path, node.path.read_text(encoding="utf-8")))
        return out

    async def entries_for(self, path: Path) -> list[IndexEntry]:
        return list(self.entries.get(str(path), []))

    def _relocate(self, old: str, new: str) -> int:
        moved = 0
        for key in list(self.entries):
            if key == old or key.startswith(old + "/"):
                target = new + key[len(old) :]
                self.entries[target] = [e.relocated(target) for e in self.entries.pop(key)]
                moved += len(self.entries[target])
        return moved

    def calls_named(self, name: str) -> list[object]:
        return [args for call, args in self.calls if call == name]


class FakeHandle:
    def __init__(self, root: Path, callback: Callable[[FileChange], None]) -> None:
        self.root = root
        self.callback = callback
        self.watches: set[Path] = {root}
        self.closed = False

    def is_watching(self, path: Path) -> bool:
        return not self.closed and path in self.watches


class FakeWatcher:
    """DirectoryWatcher stand-in: no threads, records calls, emits on demand."""

    def __init__(self, close_delay: float = 0.0) -> None:
        self.close_delay = close_delay
        self.calls: list[tuple[str, Path | None]] = []
        self.handles: list[FakeHandle] = []

    def watch(self, root: Path, on_change: Callable[[FileChange], None]) -> FakeHandle:
        self.calls.append(("watch", root))
        handle = FakeHandle(root, on_change)
        self.handles.append(handle)
        return handle

    def unwatch(self, handle: FakeHandle, path: Path) -> None:
        self.calls.append(("unwatch", path))
        handle.watches.discard(path)

    def add(self, handle: FakeHandle, path: Path) -> None:
        self.calls.append(("add", path))
        if not handle.closed:
            handle.watches.add(path)

    async def close(self, handle: FakeHandle) -> None:
        self.calls.append(("close", None))
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        handle.closed = True
        handle.watches.clear()

    @property
    def live(self) -> FakeHandle | None:
        live = [h for h in self.handles if not h.closed]
        return live[-1] if live else None

    def emit(self, change: FileChange) -> None:
        handle = self.live
        assert handle is not None, "no live watcher"
        handle.callback(change)


class FakeWatchConfig:
    """Minimal WatchConfig stand-in with short timings."""

    def __init__(
        self,
        debounce_ms: int = 10,
        hash_stability_check: bool = False,
        refresh_debounce_ms: int = 10,
    ) -> None:
        self.debounce_ms = debounce_ms
        self.hash_stability_check = hash_stability_check
        self.refresh_debounce_ms = refresh_debounce_ms


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    root = tmp_path.resolve() / "vault"
    root.mkdir()
    return root


@pytest.fixture
def fake_index() -> FakeIndex:
    return FakeIndex()


@pytest.fixture
def fake_watcher() -> FakeWatcher:
    return FakeWatcher()


@pytest.fixture
def watch_config() -> FakeWatchConfig:
    return FakeWatchConfig()


@pytest.fixture
def slow_watcher() -> FakeWatcher:
    """A watcher whose teardown outlasts any short close timeout."""
    return FakeWatcher(close_delay=1.0)
