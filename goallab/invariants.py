"""
Structural checks run after every stage.

Violations are reported as warning strings on the stage frame and never
raised, so a broken boundary stays visible in diagnostics. The one exception
is strict atom validation, which raises AtomValidationError when the run was
configured with ``strict_atoms``.
"""

from collections import deque
from typing import Dict, Iterable, List, Optional, Sequence, Set

from goallab.atoms import validate_atom
from goallab.schemas import AtomNamespace, ContextAtom, StageStats

GOAL_PREFIX = "goal:"
UTIL_PREFIX = "util:"


def compute_stats(atoms: Sequence[ContextAtom], added_count: int) -> StageStats:
    return StageStats(
        atom_count=len(atoms),
        added_count=added_count,
        missing_code_count=sum(1 for a in atoms if not a.code),
        missing_trace_derived_count=sum(
            1
            for a in atoms
            if a.origin == "derived"
            and (a.trace is None or not (a.trace.used_atom_ids or a.trace.parts))
        ),
    )


def check_new_atoms(
    atoms: Sequence[ContextAtom], changed_ids: Iterable[str], *, strict: bool
) -> List[str]:
    """Validate the atoms a stage added or overrode."""
    by_id = {atom.id: atom for atom in atoms}
    warnings: List[str] = []
    for atom_id in changed_ids:
        atom = by_id.get(atom_id)
        if atom is None:
            continue
        for issue in validate_atom(atom, strict=strict):
            if issue == "atom has no code":
                # Counted in stats; not worth a warning line per atom
                continue
            warnings.append(f"{atom_id}: {issue}")
    return warnings


def goal_boundary_violations(
    atoms: Sequence[ContextAtom], only_ids: Optional[Iterable[str]] = None
) -> List[str]:
    """Action atoms must reach goal atoms only through util:* projections.

    Direct citations of goal:* ids are reported first; otherwise the transitive
    trace closure is walked without expanding util:* atoms, and any goal:* id
    reached that way is reported. ``only_ids`` restricts the check to the atoms
    a stage just added or overrode.
    """
    by_id: Dict[str, ContextAtom] = {atom.id: atom for atom in atoms}
    selected = set(only_ids) if only_ids is not None else None
    warnings: List[str] = []
    for atom in atoms:
        if atom.ns != AtomNamespace.ACTION:
            continue
        if selected is not None and atom.id not in selected:
            continue
        direct = [u for u in atom.used_atom_ids if u.startswith(GOAL_PREFIX)]
        if direct:
            warnings.append(
                f"goal/action boundary: {atom.id} cites goal atoms directly ({', '.join(direct)})"
            )
            continue
        reached = _reachable_goal_ids(atom, by_id)
        if reached:
            warnings.append(
                f"goal/action boundary: {atom.id} reaches {', '.join(sorted(reached))} "
                "without a util:* projection"
            )
    return warnings


def _reachable_goal_ids(root: ContextAtom, by_id: Dict[str, ContextAtom]) -> Set[str]:
    seen: Set[str] = {root.id}
    found: Set[str] = set()
    queue = deque(root.used_atom_ids)
    while queue:
        atom_id = queue.popleft()
        if atom_id in seen:
            continue
        seen.add(atom_id)
        if atom_id.startswith(GOAL_PREFIX):
            found.add(atom_id)
            continue
        if atom_id.startswith(UTIL_PREFIX):
            continue
        atom = by_id.get(atom_id)
        if atom is not None:
            queue.extend(atom.used_atom_ids)
    return found


def expect_output(name: str, had_inputs: bool, produced: Sequence[ContextAtom]) -> List[str]:
    """Missing-enrichment warning: qualifying inputs but nothing produced."""
    if had_inputs and not produced:
        return [f"{name} produced zero atoms despite qualifying inputs"]
    return []
