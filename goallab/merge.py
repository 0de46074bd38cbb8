"""
Atom merge engine.

Atoms are keyed by id and the newer atom wins outright; there is no
field-level merging. The replaced value stays inspectable only if the
overriding enricher emitted a base copy first (see atoms.base_copy).
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from goallab.schemas import ContextAtom


@dataclass(frozen=True)
class MergeResult:
    atoms: List[ContextAtom] = field(default_factory=list)
    new_ids: List[str] = field(default_factory=list)
    overridden_ids: List[str] = field(default_factory=list)


def merge_atoms_prefer_newer(
    old_atoms: Iterable[ContextAtom], new_atoms: Iterable[ContextAtom]
) -> MergeResult:
    """Merge two atom sets by id, newer winning.

    Ordering: old atoms keep their positions (replaced in place), ids first seen in
    ``new_atoms`` are appended in input order. Duplicate ids inside ``new_atoms``
    resolve to the last occurrence.

    ``new_ids`` are ids absent from ``old_atoms``; ``overridden_ids`` are ids present
    in both where the new atom is a different object.
    """
    merged: Dict[str, ContextAtom] = {}
    for atom in old_atoms:
        merged[atom.id] = atom
    old_by_id = dict(merged)

    new_ids: List[str] = []
    for atom in new_atoms:
        if atom.id not in merged:
            new_ids.append(atom.id)
        # Dict assignment keeps the original insertion slot for existing keys
        merged[atom.id] = atom

    overridden = [atom_id for atom_id, atom in old_by_id.items() if merged[atom_id] is not atom]
    return MergeResult(atoms=list(merged.values()), new_ids=new_ids, overridden_ids=overridden)
