"""
Exception types raised by goallab.

Structural invariant violations are never raised; they surface as stage
warnings. The exceptions here cover programming defects (enrichment stages,
strict atom validation) and bad inputs (unknown agents, malformed scenarios).
Each message carries remediation tips in the same shape.
"""

from typing import Iterable, List, Optional


class AtomValidationError(Exception):
    """Raised by strict atom validation when an atom breaks a structural rule."""

    def __init__(self, *, atom_id: str, issues: List[str]) -> None:
        self.atom_id = atom_id
        self.issues = list(issues)
        message_lines = [f"Atom '{atom_id}' failed strict validation:"]
        message_lines.extend(f"  - {issue}" for issue in self.issues)
        message_lines.extend(
            [
                "\nRemediation tips:",
                "  - Build derived atoms with goallab.atoms.derived_atom so trace and code are filled",
                "  - Set GOALLAB_STRICT_ATOMS=false to report these as warnings instead",
            ]
        )
        super().__init__("\n".join(message_lines))


class PipelineStageError(Exception):
    """Raised when a total stage (S0-S7) throws; wraps the underlying defect."""

    def __init__(self, *, stage: str, underlying: Exception, agent_id: Optional[str] = None) -> None:
        self.stage = stage
        self.underlying = underlying
        self.agent_id = agent_id
        who = f" for agent '{agent_id}'" if agent_id else ""
        message = (
            f"Stage {stage} failed{who}: {type(underlying).__name__}: {underlying}\n\n"
            "Stages S0-S7 are total functions; this is a defect in enrichment logic.\n"
            "Remediation tips:\n"
            "  - DEBUG_PIPELINE=true to print per-stage atom counts and warnings\n"
            "  - Re-run the same SimStep to reproduce deterministically"
        )
        super().__init__(message)


class AgentNotFoundError(KeyError):
    """Raised when a world snapshot has no agent with the requested id."""

    def __init__(self, *, agent_id: str, known: Iterable[str] = ()) -> None:
        self.agent_id = agent_id
        self.known = list(known)
        listing = ", ".join(self.known) if self.known else "(none)"
        self.message = f"Agent '{agent_id}' not found in world snapshot. Known agents: {listing}"
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class ScenarioValidationError(ValueError):
    """Raised when a scenario file is missing required data."""

    def __init__(self, *, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        message = (
            f"Invalid scenario '{path}': {reason}\n\n"
            "Remediation tips:\n"
            "  - Scenarios need non-empty 'agents' and a 'locations' list\n"
            "  - Every agent's location_id must name a declared location"
        )
        super().__init__(message)
