"""
Walk a validated topology against a provisioning backend.

Pulumi does the real work in deployments (see `nlbtopo.pulumi_resources`); this module is the
contract the model expects from any engine, and `InMemoryBackend` implements it for tests.
`nlbtopo plan` prints the same ordering straight from `nlbtopo.graph`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import dataclasses
import datetime
import graphlib
import typing

import pulumi

import nlbtopo
import nlbtopo.graph
import nlbtopo.validation
from nlbtopo.junkdrawer import json_signature
from nlbtopo.model import Certificate, Resource, ResourceId, Topology, ValidationRecord

# observed by the provider, not declared
OBSERVED_FIELDS = {"state", "not_after"}


def fingerprint(resource: Resource) -> str:
    data = {k: v for k, v in dataclasses.asdict(resource).items() if k not in OBSERVED_FIELDS}
    return json_signature({"type": resource.__class__.__name__, **data})


@dataclasses.dataclass(frozen=True)
class ConvergenceResult:
    created: list[ResourceId] = dataclasses.field(default_factory=list)
    unchanged: list[ResourceId] = dataclasses.field(default_factory=list)
    deleted: list[ResourceId] = dataclasses.field(default_factory=list)


class ProvisioningBackend(ABC):
    @abstractmethod
    def resource_ids(self) -> set[ResourceId]:
        """Ids of everything currently provisioned."""

    @abstractmethod
    def resource(self, rid: ResourceId) -> Resource | None:
        """The declaration a provisioned resource was last created from."""

    @abstractmethod
    def fingerprint(self, rid: ResourceId) -> str | None:
        """The fingerprint recorded when `rid` was last created, or None if absent."""

    @abstractmethod
    def create(self, resource: Resource, fingerprint: str) -> None:
        """Create `resource`, replacing any previous version of it."""

    @abstractmethod
    def delete(self, rid: ResourceId) -> None:
        pass

    @abstractmethod
    def certificate_state(self, certificate: Certificate) -> nlbtopo.CertificateState:
        pass


class InMemoryBackend(ProvisioningBackend):
    """
    Keeps provisioned resources in a dict.

    A certificate is issued once one of its validation records has been created and the zone
    is delegated. With `delegated=False` it stays pending forever, or fails when
    `validation_timed_out` is set. Creating any id in `fail_on` raises ExternalStateError.
    """

    def __init__(
        self,
        *,
        delegated: bool = True,
        validation_timed_out: bool = False,
        fail_on: typing.Iterable[ResourceId] = (),
    ):
        self.delegated = delegated
        self.validation_timed_out = validation_timed_out
        self.fail_on = frozenset(fail_on)
        self.records: dict[ResourceId, tuple[Resource, str]] = {}
        self.calls: list[tuple[str, ResourceId]] = []

    def resource_ids(self) -> set[ResourceId]:
        return set(self.records)

    def resource(self, rid: ResourceId) -> Resource | None:
        record = self.records.get(rid)
        return record[0] if record else None

    def fingerprint(self, rid: ResourceId) -> str | None:
        record = self.records.get(rid)
        return record[1] if record else None

    def create(self, resource: Resource, fingerprint: str) -> None:
        self.calls.append(("create", resource.id))
        if resource.id in self.fail_on:
            raise nlbtopo.ExternalStateError(resource.id, "provider refused the request (quota exceeded)")

        self.records[resource.id] = (resource, fingerprint)

    def delete(self, rid: ResourceId) -> None:
        self.calls.append(("delete", rid))
        self.records.pop(rid, None)

    def certificate_state(self, certificate: Certificate) -> nlbtopo.CertificateState:
        published = any(
            isinstance(r, ValidationRecord) and r.certificate == certificate.id for r, _ in self.records.values()
        )
        observed = certificate.observe(
            record_resolves=published and self.delegated,
            timed_out=self.validation_timed_out,
        )
        return observed.state


def _prune_stale(topology: Topology, backend: ProvisioningBackend) -> list[ResourceId]:
    stale = Topology.of(
        *(r for rid in sorted(backend.resource_ids()) if rid not in topology and (r := backend.resource(rid)))
    )

    # edges into still-declared resources do not constrain the deletion order
    deps = {r.id: {d for d in r.depends_on if d in stale} for r in stale}

    deleted = []
    for rid in reversed(list(graphlib.TopologicalSorter(deps).static_order())):
        pulumi.log.info(f"deleting {rid}, no longer declared")
        backend.delete(rid)
        deleted.append(rid)

    return deleted


def converge(
    topology: Topology,
    backend: ProvisioningBackend,
    at: datetime.datetime | None = None,
) -> ConvergenceResult:
    """
    Bring `backend` in line with `topology`.

    Validation runs first, so a structural problem never reaches the backend. Resources whose
    recorded fingerprint matches their declaration are left alone, unless something they depend
    on was created in this run: replacing a resource re-creates everything downstream of it so
    that dependents link to the new version. A TLS listener is only created once the backend
    reports its certificate issued. If any create fails the run stops and a
    PartialConvergenceError names everything created so far; nothing is retried.
    """
    nlbtopo.validation.validate(topology)
    deps = nlbtopo.graph.dependencies(topology)
    order = nlbtopo.graph.creation_order(topology)

    created: list[ResourceId] = []
    unchanged: list[ResourceId] = []
    for rid in order:
        resource = topology[rid]
        fp = fingerprint(resource)
        replaced = sorted(d for d in deps[rid] if d in created)

        if backend.fingerprint(rid) == fp and not replaced:
            pulumi.log.debug(f"{rid} is up to date")
            unchanged.append(rid)
            continue

        if replaced and backend.fingerprint(rid) == fp:
            pulumi.log.info(f"re-linking {rid} to replaced {', '.join(str(d) for d in replaced)}")

        try:
            for cert in nlbtopo.graph.certificates_gating(topology, rid):
                observed = dataclasses.replace(cert, state=backend.certificate_state(cert))
                nlbtopo.validation.require_issued(topology[rid], observed, at)  # type: ignore[arg-type]

            backend.create(resource, fp)
        except Exception as e:
            pulumi.log.error(f"failed to create {rid}: {e}")
            raise nlbtopo.PartialConvergenceError(created, rid, e) from e

        pulumi.log.info(f"created {rid}")
        created.append(rid)

    deleted = _prune_stale(topology, backend)

    return ConvergenceResult(created=created, unchanged=unchanged, deleted=deleted)


def teardown(topology: Topology, backend: ProvisioningBackend) -> ConvergenceResult:
    """Delete everything `topology` declares, dependents first. Absent resources are skipped."""
    present = backend.resource_ids()

    deleted: list[ResourceId] = []
    for rid in nlbtopo.graph.teardown_order(topology):
        if rid not in present:
            continue

        try:
            backend.delete(rid)
        except Exception:
            done = ", ".join(str(d) for d in deleted) or "nothing"
            pulumi.log.error(f"teardown stopped at {rid}; already deleted: {done}")
            raise

        pulumi.log.info(f"deleted {rid}")
        deleted.append(rid)

    return ConvergenceResult(deleted=deleted)
