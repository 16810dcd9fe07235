"""Names that always resolve to the asking client's own address."""

from __future__ import annotations

from typing import Iterable, Optional


def _canonical(name: str) -> str:
    name = name.strip().lower()
    if name.endswith("."):
        name = name[:-1]
    return name


class LocalClientAllowlist:
    """Fixed set of local-client names, built once at startup.

    Lookups accept names with or without the trailing root dot and compare
    case-insensitively. The set is a frozenset, so concurrent handler threads
    can read it without locking.

    Example:
        >>> allow = LocalClientAllowlist.from_config("dns, nginx")
        >>> allow.is_local_client("nginx.")
        True
        >>> LocalClientAllowlist.from_config(None).is_local_client("dns")
        False
    """

    def __init__(self, names: Iterable[str] = ()) -> None:
        self._names = frozenset(c for c in (_canonical(n) for n in names) if c)

    @classmethod
    def from_config(cls, value: Optional[str]) -> "LocalClientAllowlist":
        if not value:
            return cls()
        return cls(value.split(","))

    @property
    def names(self) -> frozenset:
        return self._names

    def is_local_client(self, name: str) -> bool:
        if not self._names or not name:
            return False
        return _canonical(name) in self._names

    def __len__(self) -> int:
        return len(self._names)

    def __repr__(self) -> str:
        return f"LocalClientAllowlist({sorted(self._names)!r})"
