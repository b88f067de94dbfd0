from __future__ import annotations

import graphlib

import nlbtopo
from nlbtopo.model import Certificate, Listener, ResourceId, Topology


def dependencies(topology: Topology) -> dict[ResourceId, set[ResourceId]]:
    """
    Map every resource id to the ids that must exist before it can be created.

    Anything consuming a certificate also waits on the certificate's validation records:
    a certificate is only useful once issued, and issuance needs the record published.
    """
    deps: dict[ResourceId, set[ResourceId]] = {}
    for resource in topology:
        needs = set(resource.depends_on)

        if isinstance(resource, Listener) and resource.certificate is not None:
            needs.update(r.id for r in topology.validation_records_for(resource.certificate))

        missing = sorted(rid for rid in needs if rid not in topology)
        if missing:
            msg = f"{resource.id}: depends on undeclared {', '.join(str(m) for m in missing)}"
            raise nlbtopo.OrderingError(msg)

        deps[resource.id] = needs

    return deps


def creation_waves(topology: Topology) -> list[list[ResourceId]]:
    """
    Group resources into waves. Everything in a wave depends only on earlier waves, so the
    members of one wave can be created in parallel. Waves and their members are sorted so
    the result is stable across runs.
    """
    sorter = graphlib.TopologicalSorter(dependencies(topology))
    try:
        sorter.prepare()
    except graphlib.CycleError as e:
        cycle = " -> ".join(str(rid) for rid in e.args[1])
        msg = f"dependency cycle: {cycle}"
        raise nlbtopo.OrderingError(msg) from e

    waves = []
    while sorter.is_active():
        ready = sorted(sorter.get_ready())
        waves.append(ready)
        sorter.done(*ready)

    return waves


def creation_order(topology: Topology) -> list[ResourceId]:
    return [rid for wave in creation_waves(topology) for rid in wave]


def teardown_order(topology: Topology) -> list[ResourceId]:
    return list(reversed(creation_order(topology)))


def certificates_gating(topology: Topology, rid: ResourceId) -> list[Certificate]:
    """The certificates that must be issued before `rid` can be configured."""
    listener = topology.get(rid, Listener)
    if listener is None or listener.protocol != nlbtopo.ListenerProtocol.TLS:
        return []

    cert = topology.get(listener.certificate, Certificate)
    return [cert] if cert is not None else []
