"""Tests for nlbtopo.graph module."""

import dataclasses

import pytest

import nlbtopo
import nlbtopo.graph
from nlbtopo.model import (
    AliasRecord,
    Certificate,
    ComputeResource,
    Listener,
    LoadBalancer,
    ResourceId,
    Topology,
    ValidationRecord,
    Zone,
)


def only(topology: Topology, kind: type):
    (resource,) = topology.of_kind(kind)
    return resource


def test_every_resource_is_ordered_once(topology: Topology) -> None:
    order = nlbtopo.graph.creation_order(topology)

    assert len(order) == len(topology)
    assert set(order) == {r.id for r in topology}


def test_dependencies_come_first(topology: Topology) -> None:
    """Test that nothing is created before anything it depends on."""
    position = {rid: i for i, rid in enumerate(nlbtopo.graph.creation_order(topology))}

    for rid, needs in nlbtopo.graph.dependencies(topology).items():
        for dep in needs:
            assert position[dep] < position[rid], f"{dep} must precede {rid}"


def test_alias_after_load_balancer(topology: Topology) -> None:
    order = nlbtopo.graph.creation_order(topology)

    assert order.index(only(topology, LoadBalancer).id) < order.index(only(topology, AliasRecord).id)


def test_listener_waits_for_certificate_validation(topology: Topology) -> None:
    """Test that a TLS listener is created only after its certificate and validation record."""
    order = nlbtopo.graph.creation_order(topology)
    listener = order.index(only(topology, Listener).id)

    assert order.index(only(topology, Certificate).id) < listener
    assert order.index(only(topology, ValidationRecord).id) < listener
    assert order.index(only(topology, ComputeResource).id) < listener


def test_first_wave_has_no_dependencies(topology: Topology) -> None:
    first, *_ = nlbtopo.graph.creation_waves(topology)

    assert only(topology, Zone).id in first
    assert all(topology[rid].depends_on == () for rid in first)


def test_waves_are_deterministic(topology: Topology) -> None:
    reordered = Topology.of(*reversed(list(topology)))

    assert nlbtopo.graph.creation_waves(reordered) == nlbtopo.graph.creation_waves(topology)


def test_teardown_is_reverse_of_creation(topology: Topology) -> None:
    assert nlbtopo.graph.teardown_order(topology) == nlbtopo.graph.creation_order(topology)[::-1]


def test_teardown_deletes_dependents_first(topology: Topology) -> None:
    order = nlbtopo.graph.teardown_order(topology)

    assert order.index(only(topology, AliasRecord).id) < order.index(only(topology, LoadBalancer).id)
    assert order.index(only(topology, Listener).id) < order.index(only(topology, Certificate).id)
    assert order[-1] in {r.id for r in topology if r.depends_on == ()}


def test_cycle_is_an_ordering_error(topology: Topology) -> None:
    """Test that a dependency cycle is rejected instead of producing a partial order."""
    zone = only(topology, Zone)
    alias = only(topology, AliasRecord)

    class CyclicZone(Zone):
        @property
        def depends_on(self) -> tuple[ResourceId, ...]:
            return (alias.id,)

    cyclic = topology.replace(CyclicZone(**dataclasses.asdict(zone) | {"id": zone.id}))

    with pytest.raises(nlbtopo.OrderingError, match="dependency cycle"):
        nlbtopo.graph.creation_waves(cyclic)


def test_dangling_edge_is_an_ordering_error(topology: Topology) -> None:
    alias = only(topology, AliasRecord)
    missing = ResourceId(nlbtopo.ResourceKind.LOAD_BALANCER, "gone")
    dangling = topology.replace(dataclasses.replace(alias, load_balancer=missing))

    with pytest.raises(nlbtopo.OrderingError, match="depends on undeclared load-balancer/gone"):
        nlbtopo.graph.creation_order(dangling)


def test_certificates_gating(topology: Topology) -> None:
    listener = only(topology, Listener)

    assert nlbtopo.graph.certificates_gating(topology, listener.id) == [only(topology, Certificate)]
    assert nlbtopo.graph.certificates_gating(topology, only(topology, LoadBalancer).id) == []
