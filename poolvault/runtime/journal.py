"""
poolvault.runtime.journal — staged writes and side effects with begin/commit/revert.

A deterministic, in-memory journal layered over a plain key/value mapping.
Each `begin()` pushes an overlay; writes and recorded side effects (queued
payments) land in the top overlay; reads consult overlays top → base.
`commit()` folds the top overlay into its parent, or into the base when it is
the outermost one. `revert()` drops the top overlay.

    j = Journal(base)
    j.begin()
    j.set(b"total_raised", b"600")
    j.record_effect(instr)
    applied = j.commit()          # outermost: writes hit `base`, effects returned

With no overlay open, writes go straight to the base mapping and effects are
returned immediately by `flush_effects()`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, MutableMapping, Optional, Tuple


@dataclass
class _Overlay:
    """
    One journal layer.

    - `writes`: staged key writes; `None` marks a deletion.
    - `effects`: side effects in the order they were recorded.
    """

    writes: Dict[bytes, Optional[bytes]] = field(default_factory=dict)
    effects: List[Any] = field(default_factory=list)


class Journal:
    def __init__(self, base: Optional[MutableMapping[bytes, bytes]] = None) -> None:
        self._base: MutableMapping[bytes, bytes] = base if base is not None else {}
        self._layers: List[_Overlay] = []
        self._loose_effects: List[Any] = []

    # ------------------------------------------------------------------ #
    # Checkpointing
    # ------------------------------------------------------------------ #

    def depth(self) -> int:
        return len(self._layers)

    def begin(self) -> int:
        """Open a new overlay and return the new depth."""
        self._layers.append(_Overlay())
        return len(self._layers)

    def commit(self) -> List[Any]:
        """
        Fold the top overlay into its parent. When it is the outermost overlay
        the writes are applied to the base and its effects are returned.
        """
        if not self._layers:
            raise RuntimeError("journal: commit without begin")
        top = self._layers.pop()
        if self._layers:
            parent = self._layers[-1]
            parent.writes.update(top.writes)
            parent.effects.extend(top.effects)
            return []
        for k, v in top.writes.items():
            if v is None:
                self._base.pop(k, None)
            else:
                self._base[k] = v
        return list(top.effects)

    def revert(self) -> None:
        if not self._layers:
            raise RuntimeError("journal: revert without begin")
        self._layers.pop()

    def revert_all(self) -> None:
        self._layers.clear()

    # ------------------------------------------------------------------ #
    # Key/value view
    # ------------------------------------------------------------------ #

    def get(self, key: bytes) -> Optional[bytes]:
        for layer in reversed(self._layers):
            if key in layer.writes:
                return layer.writes[key]
        return self._base.get(key)

    def set(self, key: bytes, value: bytes) -> None:
        if self._layers:
            self._layers[-1].writes[bytes(key)] = bytes(value)
        else:
            self._base[bytes(key)] = bytes(value)

    def delete(self, key: bytes) -> None:
        if self._layers:
            self._layers[-1].writes[bytes(key)] = None
        else:
            self._base.pop(bytes(key), None)

    def items(self) -> Iterator[Tuple[bytes, bytes]]:
        """Visible (key, value) pairs in key order, overlays applied."""
        visible: Dict[bytes, bytes] = dict(self._base)
        for layer in self._layers:
            for k, v in layer.writes.items():
                if v is None:
                    visible.pop(k, None)
                else:
                    visible[k] = v
        for k in sorted(visible):
            yield k, visible[k]

    # ------------------------------------------------------------------ #
    # Side effects
    # ------------------------------------------------------------------ #

    def record_effect(self, effect: Any) -> None:
        if self._layers:
            self._layers[-1].effects.append(effect)
        else:
            self._loose_effects.append(effect)

    def staged_effects(self) -> List[Any]:
        """Effects recorded in every open overlay (outermost first)."""
        out: List[Any] = []
        for layer in self._layers:
            out.extend(layer.effects)
        return out

    def flush_effects(self) -> List[Any]:
        """Return and clear effects recorded while no overlay was open."""
        out, self._loose_effects = self._loose_effects, []
        return out

    def pending_keys(self) -> int:
        return sum(len(layer.writes) for layer in self._layers)


__all__ = ["Journal"]
