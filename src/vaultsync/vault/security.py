"""Path containment for operations routed through a vault."""

from __future__ import annotations

from pathlib import Path


class PathTraversalError(ValueError):
    """Raised when an operation path escapes the vault root."""

    def __init__(self, user_path: str | Path, vault_root: Path) -> None:
        self.user_path = user_path
        self.vault_root = vault_root
        super().__init__(
            f"Path traversal blocked: '{user_path}' escapes vault root '{vault_root}'"
        )


def resolve_in_vault(user_path: str | Path, vault_root: Path) -> Path:
    """Resolve *user_path* against *vault_root* and verify it stays inside.

    Relative paths are taken relative to the vault root; absolute paths must
    already point inside it. Returns the resolved absolute path.
    """
    resolved_root = vault_root.resolve()
    candidate = (resolved_root / user_path).resolve()
    try:
        candidate.relative_to(resolved_root)
    except ValueError:
        raise PathTraversalError(user_path, vault_root) from None
    return candidate
