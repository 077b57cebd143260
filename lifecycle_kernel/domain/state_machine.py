"""
StateMachineDefinition -- static, self-validating lifecycle tables.

Responsibility:
    Source of truth for transition legality and SLA urgency.  Each domain
    (Order, ReturnRequest, Shipment) owns one immutable definition mapping
    every member of its state enum to ``{display_name, sla_hours,
    allowed_next}``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Imported by the
    TransitionEngine, the SLATracker, the selectors and the workflow
    coordinators.  MUST NOT import from services/, selectors/ or models/.

Invariants enforced:
    - Totality: every enum member has an entry and every state named in any
      ``allowed_next`` set has its own entry.  Checked in ``__post_init__``
      so an incomplete table fails at import time, never mid-request.
    - SLA hours are non-negative integers (0 = terminal or deadline-free).
    - Self-transitions are illegal unless listed explicitly in the table.
    - Definitions are frozen; changing a business rule is a deploy.

Failure modes:
    - ConfigurationError at construction for any of the above.
    - ``coerce()`` returns None for an unknown state string; callers turn
      that into an illegal-transition result rather than a fault.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping

from lifecycle_kernel.domain.states import Domain
from lifecycle_kernel.exceptions import ConfigurationError


@dataclass(frozen=True)
class StateSpec:
    """One row of a lifecycle table."""

    display_name: str
    sla_hours: int
    allowed_next: tuple[Enum, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return not self.allowed_next


@dataclass(frozen=True)
class TransitionOption:
    """A legal next state paired with its human label."""

    state: str
    display_name: str

    def to_dict(self) -> dict[str, str]:
        return {"state": self.state, "display_name": self.display_name}


@dataclass(frozen=True)
class StateMachineDefinition:
    """
    Immutable lifecycle table for a single domain.

    Contract:
        Constructed once at import from a literal table.  All queries are
        pure lookups.

    Guarantees:
        - Construction succeeds only for a total, well-formed table.
        - ``allowed_transitions`` preserves table declaration order so
          that option lists are stable across calls.

    Non-goals:
        - Does NOT know about persistence or actors; guard conditions that
          depend on ownership or reasons live in the workflow coordinators.
    """

    domain: Domain
    state_enum: type[Enum]
    initial_state: Enum
    table: Mapping[Enum, StateSpec] = field(hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "table", MappingProxyType(dict(self.table)))
        self.validate()

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def build(
        cls,
        domain: Domain,
        state_enum: type[Enum],
        initial_state: Enum,
        rows: Mapping[Enum, tuple[str, int, Iterable[Enum]]],
    ) -> StateMachineDefinition:
        """Build a definition from ``state: (display_name, sla_hours, next)`` rows."""
        table = {
            state: StateSpec(
                display_name=display_name,
                sla_hours=sla_hours,
                allowed_next=tuple(allowed),
            )
            for state, (display_name, sla_hours, allowed) in rows.items()
        }
        return cls(
            domain=domain,
            state_enum=state_enum,
            initial_state=initial_state,
            table=table,
        )

    def validate(self) -> None:
        """Check totality and well-formedness; raise ConfigurationError."""
        domain = self.domain.value

        if not isinstance(self.initial_state, self.state_enum):
            raise ConfigurationError(
                f"initial state {self.initial_state!r} is not a {self.state_enum.__name__}",
                domain=domain,
            )

        for member in self.state_enum:
            if member not in self.table:
                raise ConfigurationError(
                    "state has no definition entry",
                    domain=domain,
                    state=member.value,
                )

        for state, spec in self.table.items():
            if not isinstance(state, self.state_enum):
                raise ConfigurationError(
                    f"table key {state!r} is not a {self.state_enum.__name__}",
                    domain=domain,
                )
            if not isinstance(spec.sla_hours, int) or spec.sla_hours < 0:
                raise ConfigurationError(
                    f"sla_hours must be a non-negative integer, got {spec.sla_hours!r}",
                    domain=domain,
                    state=state.value,
                )
            if not spec.display_name:
                raise ConfigurationError(
                    "display name is empty", domain=domain, state=state.value
                )
            if len(set(spec.allowed_next)) != len(spec.allowed_next):
                raise ConfigurationError(
                    "allowed_next contains duplicates",
                    domain=domain,
                    state=state.value,
                )
            for target in spec.allowed_next:
                if target not in self.table:
                    raise ConfigurationError(
                        f"reachable state {getattr(target, 'value', target)!r} "
                        "has no definition entry",
                        domain=domain,
                        state=state.value,
                    )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def coerce(self, value: str | Enum) -> Enum | None:
        """Map a raw state value onto this domain's enum, or None if unknown."""
        if isinstance(value, self.state_enum):
            return value
        raw = value.value if isinstance(value, Enum) else value
        try:
            return self.state_enum(raw)
        except ValueError:
            return None

    def spec(self, state: str | Enum) -> StateSpec:
        member = self.coerce(state)
        if member is None:
            raise KeyError(f"{self.domain.value} has no state {state!r}")
        return self.table[member]

    def allowed_transitions(self, from_state: str | Enum) -> tuple[Enum, ...]:
        return self.spec(from_state).allowed_next

    def is_allowed(self, from_state: str | Enum, to_state: str | Enum) -> bool:
        target = self.coerce(to_state)
        if target is None:
            return False
        return target in self.allowed_transitions(from_state)

    def sla_hours(self, state: str | Enum) -> int:
        return self.spec(state).sla_hours

    def display_name(self, state: str | Enum | None) -> str | None:
        if state is None:
            return None
        member = self.coerce(state)
        if member is None:
            return str(state)
        return self.table[member].display_name

    def is_terminal(self, state: str | Enum) -> bool:
        return self.spec(state).is_terminal

    def transition_options(self, from_state: str | Enum) -> list[TransitionOption]:
        return [
            TransitionOption(state=s.value, display_name=self.table[s].display_name)
            for s in self.allowed_transitions(from_state)
        ]

    def status_options(self) -> list[dict]:
        """Every state in declaration order with its label and transitions."""
        return [
            {
                "value": state.value,
                "label": spec.display_name,
                "sla_hours": spec.sla_hours,
                "transitions": [s.value for s in spec.allowed_next],
            }
            for state, spec in self.table.items()
        ]


class StateMachineRegistry:
    """
    Domain-keyed lookup over a set of definitions.

    Contract:
        ``allowed_transitions(domain, from_state)`` and
        ``sla_hours(domain, state)`` are the two questions the engine asks.

    Guarantees:
        - Exactly one definition per domain; every Domain must be covered.
    """

    def __init__(self, definitions: Iterable[StateMachineDefinition]):
        by_domain: dict[Domain, StateMachineDefinition] = {}
        for definition in definitions:
            if definition.domain in by_domain:
                raise ConfigurationError(
                    "duplicate state machine definition",
                    domain=definition.domain.value,
                )
            by_domain[definition.domain] = definition
        for domain in Domain:
            if domain not in by_domain:
                raise ConfigurationError(
                    "no state machine definition registered", domain=domain.value
                )
        self._by_domain = MappingProxyType(by_domain)

    def for_domain(self, domain: Domain | str) -> StateMachineDefinition:
        return self._by_domain[Domain(domain)]

    def allowed_transitions(
        self, domain: Domain | str, from_state: str | Enum
    ) -> tuple[Enum, ...]:
        return self.for_domain(domain).allowed_transitions(from_state)

    def sla_hours(self, domain: Domain | str, state: str | Enum) -> int:
        return self.for_domain(domain).sla_hours(state)

    def display_name(self, domain: Domain | str, state: str | Enum | None) -> str | None:
        return self.for_domain(domain).display_name(state)

    def is_terminal(self, domain: Domain | str, state: str | Enum) -> bool:
        return self.for_domain(domain).is_terminal(state)

    def __iter__(self):
        return iter(self._by_domain.values())
