"""
Hypothesis-based lifecycle properties.

Random walks over the lifecycle tables, mixing legal and illegal requests,
must leave every entity in a state that its event history replays to
exactly, with an SLA record present iff the state owes a deadline.

Each example builds its own in-memory database so examples never share
state.
"""

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy.orm import sessionmaker

from lifecycle_kernel.db.engine import build_engine, create_tables
from lifecycle_kernel.domain.clock import DeterministicClock
from lifecycle_kernel.domain.definitions import DEFAULT_REGISTRY
from lifecycle_kernel.domain.dtos import Actor
from lifecycle_kernel.domain.states import Domain
from lifecycle_kernel.models.lifecycle_entity import LifecycleEntity
from lifecycle_kernel.services.event_store import EventStore
from lifecycle_kernel.services.sla_tracker import SLATracker
from lifecycle_kernel.services.transition_engine import (
    TransitionEngine,
    TransitionStatus,
)

ACTOR = Actor.admin("fuzzer")


def _fresh_session():
    engine = build_engine("sqlite:///:memory:")
    create_tables(engine)
    return engine, sessionmaker(bind=engine, expire_on_commit=False)()


class TestRandomWalks:
    """Engine state always equals the replay of its own history."""

    @given(
        domain=st.sampled_from(list(Domain)),
        choices=st.lists(st.integers(min_value=0, max_value=1000), max_size=25),
        hours=st.lists(st.integers(min_value=0, max_value=200), max_size=25),
    )
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_history_replays_to_current_state(self, domain, choices, hours):
        engine, session = _fresh_session()
        try:
            clock = DeterministicClock()
            definition = DEFAULT_REGISTRY.for_domain(domain)
            lifecycle = TransitionEngine(session, clock=clock)
            entity_id = lifecycle.create_entity(domain, "REF-1", ACTOR).entity_id
            all_states = [s.value for s in definition.state_enum]
            expected = [definition.initial_state.value]

            for i, choice in enumerate(choices):
                if i < len(hours):
                    clock.advance_hours(hours[i])
                current = expected[-1]
                target = all_states[choice % len(all_states)]
                result = lifecycle.attempt_transition(entity_id, domain, target, ACTOR)

                if definition.is_allowed(current, target):
                    assert result.status is TransitionStatus.APPLIED
                    expected.append(target)
                else:
                    assert result.status is TransitionStatus.ILLEGAL_TRANSITION
                    assert {o.state for o in result.allowed} == {
                        s.value for s in definition.allowed_transitions(current)
                    }
                SLATracker(session, clock).sweep_breaches()
                session.commit()

            entity = session.get(LifecycleEntity, entity_id, populate_existing=True)
            assert entity.current_state == expected[-1]
            assert entity.version == len(expected)
            assert EventStore(session).replay_states(entity_id) == expected

            record = SLATracker(session, clock).get_record(entity_id)
            if definition.sla_hours(expected[-1]) == 0:
                assert record is None
            else:
                assert record is not None
                assert record.current_state == expected[-1]
        finally:
            session.close()
            engine.dispose()

    @given(
        walk=st.lists(st.integers(min_value=0, max_value=1000), min_size=1, max_size=15),
    )
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_always_legal_walks_on_orders(self, walk):
        engine, session = _fresh_session()
        try:
            clock = DeterministicClock()
            definition = DEFAULT_REGISTRY.for_domain(Domain.ORDER)
            lifecycle = TransitionEngine(session, clock=clock)
            entity_id = lifecycle.create_entity(Domain.ORDER, "ORD-1", ACTOR).entity_id
            state = definition.initial_state.value

            for choice in walk:
                options = definition.allowed_transitions(state)
                if not options:
                    break
                state = options[choice % len(options)].value
                lifecycle.attempt_transition(entity_id, Domain.ORDER, state, ACTOR).raise_for_status()

            events = EventStore(session).list_by_entity(entity_id)
            assert [e.entity_sequence for e in events] == list(range(1, len(events) + 1))
            assert events[-1].new_state == state
        finally:
            session.close()
            engine.dispose()
