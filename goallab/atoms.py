"""
Atom construction, lookup and validation helpers.

Every enricher builds atoms through the helpers here so that origin, code and
trace are filled the same way everywhere:

- world_atom / belief_atom: observed or recalled facts (trace optional)
- derived_atom: computed facts (trace always present)
- base_copy: sibling copy of an atom's value before an enricher overrides it

AtomIndex is the read-only view enrichers use to look up inputs by id or prefix.
"""

import math
from typing import Any, Dict, Iterable, List, Optional, Sequence

from goallab.errors import AtomValidationError
from goallab.schemas import AtomNamespace, AtomTrace, ContextAtom


def clamp01(value: float) -> float:
    if value != value:  # NaN
        return 0.0
    return 0.0 if value < 0.0 else 1.0 if value > 1.0 else float(value)


def sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def noisy_or(values: Iterable[float]) -> float:
    """Combine independent [0,1] signals: 1 - prod(1 - v)."""
    remainder = 1.0
    for value in values:
        remainder *= 1.0 - clamp01(value)
    return clamp01(1.0 - remainder)


def namespace_of(atom_id: str) -> AtomNamespace:
    return AtomNamespace(atom_id.split(":", 1)[0])


def code_for(atom_id: str, agent_ids: Iterable[Optional[str]] = ()) -> str:
    """Stable code key: id segments with agent ids removed, joined by dots.

    ``tom:dyad:alice:bob:trust`` with agents (alice, bob) -> ``tom.dyad.trust``.
    """
    skip = {a for a in agent_ids if a}
    return ".".join(segment for segment in atom_id.split(":") if segment not in skip)


def _build(
    atom_id: str,
    *,
    origin: str,
    kind: str,
    source: str,
    magnitude: float,
    subject: Optional[str],
    target: Optional[str],
    confidence: float,
    tags: Sequence[str],
    label: Optional[str],
    code: Optional[str],
    trace: Optional[AtomTrace],
    clamp: bool,
) -> ContextAtom:
    return ContextAtom(
        id=atom_id,
        ns=namespace_of(atom_id),
        kind=kind,
        origin=origin,
        source=source,
        subject=subject,
        target=target,
        magnitude=clamp01(magnitude) if clamp else float(magnitude),
        confidence=clamp01(confidence),
        tags=list(dict.fromkeys(tags)),
        label=label,
        code=code if code is not None else code_for(atom_id, (subject, target)),
        trace=trace,
    )


def make_trace(
    used: Iterable[str] = (),
    *,
    notes: Iterable[str] = (),
    parts: Optional[Dict[str, Any]] = None,
) -> AtomTrace:
    # Order-preserving de-duplication keeps traces readable in reports
    return AtomTrace(
        used_atom_ids=list(dict.fromkeys(u for u in used if u)),
        notes=list(notes),
        parts=dict(parts or {}),
    )


def derived_atom(
    atom_id: str,
    *,
    kind: str,
    source: str,
    magnitude: float,
    used: Iterable[str] = (),
    notes: Iterable[str] = (),
    parts: Optional[Dict[str, Any]] = None,
    subject: Optional[str] = None,
    target: Optional[str] = None,
    confidence: float = 1.0,
    tags: Sequence[str] = (),
    label: Optional[str] = None,
    code: Optional[str] = None,
    origin: str = "derived",
    clamp: bool = True,
) -> ContextAtom:
    """Build a computed atom. The trace is always attached."""
    return _build(
        atom_id,
        origin=origin,
        kind=kind,
        source=source,
        magnitude=magnitude,
        subject=subject,
        target=target,
        confidence=confidence,
        tags=tags,
        label=label,
        code=code,
        trace=make_trace(used, notes=notes, parts=parts),
        clamp=clamp,
    )


def world_atom(
    atom_id: str,
    *,
    kind: str,
    source: str,
    magnitude: float,
    subject: Optional[str] = None,
    target: Optional[str] = None,
    confidence: float = 1.0,
    tags: Sequence[str] = (),
    label: Optional[str] = None,
    code: Optional[str] = None,
    parts: Optional[Dict[str, Any]] = None,
) -> ContextAtom:
    """Build an observed fact. Observations carry a trace only for their raw values."""
    return _build(
        atom_id,
        origin="world",
        kind=kind,
        source=source,
        magnitude=magnitude,
        subject=subject,
        target=target,
        confidence=confidence,
        tags=tags,
        label=label,
        code=code,
        trace=make_trace(parts=parts) if parts else None,
        clamp=True,
    )


def belief_atom(
    atom_id: str,
    *,
    kind: str,
    source: str,
    magnitude: float,
    used: Iterable[str] = (),
    notes: Iterable[str] = (),
    parts: Optional[Dict[str, Any]] = None,
    subject: Optional[str] = None,
    target: Optional[str] = None,
    confidence: float = 0.8,
    tags: Sequence[str] = (),
    label: Optional[str] = None,
    code: Optional[str] = None,
) -> ContextAtom:
    """Build a recalled or assumed fact (memory, relation-prior seeds)."""
    return derived_atom(
        atom_id,
        kind=kind,
        source=source,
        magnitude=magnitude,
        used=used,
        notes=notes,
        parts=parts,
        subject=subject,
        target=target,
        confidence=confidence,
        tags=tags,
        label=label,
        code=code,
        origin="belief",
    )


def base_copy(atom: ContextAtom, base_id: str, *, source: str) -> ContextAtom:
    """Copy an atom's current value to a sibling id before it gets overridden."""
    return derived_atom(
        base_id,
        kind=f"{atom.kind}_base",
        source=source,
        magnitude=atom.magnitude,
        used=[atom.id],
        notes=[f"value of {atom.id} before override"],
        parts={"copyOf": atom.id, "origin": atom.origin},
        subject=atom.subject,
        target=atom.target,
        confidence=atom.confidence,
        tags=[*atom.tags, "base"],
        label=f"base of {atom.label or atom.id}",
        clamp=False,
    )


def base_id_for(atom_id: str) -> str:
    """``ctx:danger:a`` -> ``ctx:base:danger:a``; ``tom:dyad:a:b:m`` -> ``tom:base:dyad:a:b:m``."""
    ns, _, rest = atom_id.partition(":")
    return f"{ns}:base:{rest}"


def validate_atom(atom: ContextAtom, *, strict: bool = False) -> List[str]:
    """Return structural issues for one atom; raise instead when strict.

    Self reference is already rejected when the atom is constructed.
    """
    issues: List[str] = []
    if atom.origin == "derived" and (atom.trace is None or not (atom.trace.used_atom_ids or atom.trace.parts)):
        issues.append("derived atom has no trace data")
    if not 0.0 <= atom.confidence <= 1.0:
        issues.append(f"confidence {atom.confidence} outside [0,1]")
    if atom.id.split(":", 1)[0] != atom.ns.value:
        issues.append(f"id prefix does not match ns '{atom.ns.value}'")
    if not atom.code:
        issues.append("atom has no code")
    if strict and issues:
        raise AtomValidationError(atom_id=atom.id, issues=issues)
    return issues


class AtomIndex:
    """Read-only id lookup over an atom list."""

    def __init__(self, atoms: Iterable[ContextAtom]):
        self._atoms: List[ContextAtom] = list(atoms)
        self._by_id: Dict[str, ContextAtom] = {atom.id: atom for atom in self._atoms}

    def __contains__(self, atom_id: str) -> bool:
        return atom_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self):
        return iter(self._atoms)

    def get(self, atom_id: str) -> Optional[ContextAtom]:
        return self._by_id.get(atom_id)

    def magnitude(self, atom_id: str, default: float = 0.0) -> float:
        atom = self._by_id.get(atom_id)
        return atom.magnitude if atom is not None else default

    def first(self, atom_ids: Iterable[str]) -> Optional[ContextAtom]:
        """First atom present among candidate ids (most specific first)."""
        for atom_id in atom_ids:
            atom = self._by_id.get(atom_id)
            if atom is not None:
                return atom
        return None

    def by_prefix(self, prefix: str) -> List[ContextAtom]:
        return [atom for atom in self._atoms if atom.id.startswith(prefix)]

    def present(self, atom_ids: Iterable[str]) -> List[str]:
        return [atom_id for atom_id in atom_ids if atom_id in self._by_id]

    def others_of(self, self_id: str) -> List[str]:
        """Agents the observer holds any relational fact about, in first-seen order."""
        prefixes = (
            f"obs:nearby:{self_id}:",
            f"rel:base:{self_id}:",
            f"rel:tag:{self_id}:",
            f"tom:dyad:{self_id}:",
        )
        seen: Dict[str, None] = {}
        for atom in self._atoms:
            for prefix in prefixes:
                if atom.id.startswith(prefix):
                    other = atom.id[len(prefix):].split(":", 1)[0]
                    if other and other != self_id:
                        seen.setdefault(other, None)
        return list(seen)

    def nearby(self, self_id: str) -> Dict[str, float]:
        """Closeness of co-located agents keyed by agent id."""
        prefix = f"obs:nearby:{self_id}:"
        return {
            atom.id[len(prefix):]: atom.magnitude
            for atom in self._atoms
            if atom.id.startswith(prefix) and ":" not in atom.id[len(prefix):]
        }
