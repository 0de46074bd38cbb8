"""Tests for atom construction, validation and lookup helpers."""

import pytest
from pydantic import ValidationError

from goallab.atoms import (
    AtomIndex,
    base_copy,
    base_id_for,
    belief_atom,
    clamp01,
    code_for,
    derived_atom,
    noisy_or,
    validate_atom,
    world_atom,
)
from goallab.errors import AtomValidationError
from goallab.schemas import AtomNamespace, AtomTrace, ContextAtom


def make_obs(atom_id: str, magnitude: float = 0.5, **kwargs) -> ContextAtom:
    return world_atom(atom_id, kind="test", source="test", magnitude=magnitude, **kwargs)


def test_world_atom_fills_namespace_origin_and_code():
    atom = make_obs("ctx:danger:ana", 0.7, subject="ana")

    assert atom.ns == AtomNamespace.CTX
    assert atom.origin == "world"
    assert atom.code == "ctx.danger"
    assert atom.trace is None


def test_derived_atom_always_has_trace():
    atom = derived_atom(
        "emo:fear:ana",
        kind="emotion",
        source="test",
        magnitude=0.4,
        used=["app:threat:ana", "app:threat:ana", ""],
        parts={"threat": 0.4},
        subject="ana",
    )

    assert atom.origin == "derived"
    assert atom.trace.used_atom_ids == ["app:threat:ana"]
    assert atom.trace.parts == {"threat": 0.4}


def test_belief_atom_defaults_to_reduced_confidence():
    atom = belief_atom("mem:event:help:1", kind="memory_event", source="test", magnitude=0.6, used=["event:help:1"])

    assert atom.origin == "belief"
    assert atom.confidence == pytest.approx(0.8)


def test_magnitude_and_confidence_are_clamped():
    atom = make_obs("ctx:danger:ana", 1.7, confidence=-0.2)

    assert atom.magnitude == 1.0
    assert atom.confidence == 0.0


def test_self_reference_is_rejected_at_construction():
    with pytest.raises(ValidationError):
        ContextAtom(
            id="ctx:danger:ana",
            ns=AtomNamespace.CTX,
            kind="axis",
            origin="derived",
            magnitude=0.5,
            trace=AtomTrace(used_atom_ids=["ctx:danger:ana"]),
        )

    with pytest.raises(ValidationError):
        derived_atom("ctx:danger:ana", kind="axis", source="test", magnitude=0.5, used=["ctx:danger:ana"])


def test_unknown_namespace_is_rejected():
    with pytest.raises(ValueError):
        make_obs("weather:rain:ana")


def test_code_for_strips_agent_ids():
    assert code_for("tom:dyad:ana:ben:trust", ("ana", "ben")) == "tom.dyad.trust"
    assert code_for("ctx:danger:ana", ("ana", None)) == "ctx.danger"


def test_validate_atom_reports_untraced_derived_atom():
    atom = ContextAtom(
        id="emo:fear:ana",
        ns=AtomNamespace.EMO,
        kind="emotion",
        origin="derived",
        magnitude=0.3,
        code="emo.fear",
    )

    assert validate_atom(atom) == ["derived atom has no trace data"]


def test_validate_atom_strict_raises_with_remediation():
    atom = ContextAtom(id="emo:fear:ana", ns=AtomNamespace.EMO, kind="emotion", origin="derived", magnitude=0.3)

    with pytest.raises(AtomValidationError) as exc_info:
        validate_atom(atom, strict=True)

    assert exc_info.value.atom_id == "emo:fear:ana"
    assert "Remediation tips" in str(exc_info.value)


def test_validate_atom_flags_namespace_mismatch():
    atom = ContextAtom(id="ctx:danger:ana", ns=AtomNamespace.EMO, kind="axis", origin="world", magnitude=0.3, code="x")

    assert any("id prefix" in issue for issue in validate_atom(atom))


def test_base_copy_keeps_value_and_cites_original():
    atom = make_obs("ctx:danger:ana", 0.65, subject="ana")
    base = base_copy(atom, base_id_for(atom.id), source="test")

    assert base.id == "ctx:base:danger:ana"
    assert base.magnitude == pytest.approx(0.65)
    assert base.used_atom_ids == ["ctx:danger:ana"]
    assert base.trace.parts["copyOf"] == "ctx:danger:ana"


def test_base_id_for_dyads():
    assert base_id_for("tom:dyad:ana:ben:trust") == "tom:base:dyad:ana:ben:trust"


def test_atom_index_lookups():
    index = AtomIndex(
        [
            make_obs("obs:nearby:ana:ben", 0.6),
            make_obs("rel:base:ana:cal:hostility", 0.4),
            make_obs("ctx:danger:ana", 0.2),
        ]
    )

    assert "ctx:danger:ana" in index
    assert index.magnitude("ctx:missing:ana", 0.3) == 0.3
    assert index.first(["ctx:cover:ana", "ctx:danger:ana"]).id == "ctx:danger:ana"
    assert index.others_of("ana") == ["ben", "cal"]
    assert index.nearby("ana") == {"ben": pytest.approx(0.6)}


def test_numeric_helpers():
    assert clamp01(float("nan")) == 0.0
    assert noisy_or([0.5, 0.5]) == pytest.approx(0.75)
    assert noisy_or([]) == 0.0
