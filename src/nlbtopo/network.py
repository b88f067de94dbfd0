from __future__ import annotations

import dataclasses
import ipaddress
import typing

import nlbtopo
from nlbtopo.model import Network, ResourceId, Segment


@dataclasses.dataclass(frozen=True)
class SegmentRequest:
    name: str
    segment_type: nlbtopo.SegmentType
    prefix_length: int
    cidr: str | None = None


def partition(
    cidr_block: str | ipaddress.IPv4Network,
    requests: typing.Sequence[SegmentRequest],
) -> list[tuple[SegmentRequest, ipaddress.IPv4Network]]:
    """
    Carve one non-overlapping range per request out of `cidr_block`.

    Requests with an explicit `cidr` are placed first, exactly where they ask to be. The rest
    are allocated in declaration order, each taking the lowest free range aligned to its
    prefix length. For example, 10.0.0.0/24 split into a public /27 followed by an isolated /27
    yields 10.0.0.0/27 and 10.0.0.32/27.

    Every problem found is reported at once in a single StructuralError.
    """
    block = typing.cast(ipaddress.IPv4Network, ipaddress.ip_network(cidr_block))
    problems: list[str] = []
    allocated: dict[str, ipaddress.IPv4Network] = {}

    names = [r.name for r in requests]
    for name in sorted({n for n in names if names.count(n) > 1}):
        problems.append(f"segment {name!r} is declared more than once")

    for request in requests:
        if request.cidr is None:
            continue

        try:
            net = typing.cast(ipaddress.IPv4Network, ipaddress.ip_network(request.cidr))
        except ValueError as e:
            problems.append(f"segment {request.name!r}: {e}")
            continue

        if net.version != block.version:
            problems.append(
                f"segment {request.name!r}: range {net} is outside of {block} "
                f"(IPv{net.version} range in an IPv{block.version} block)"
            )
            continue

        if net.prefixlen != request.prefix_length:
            problems.append(
                f"segment {request.name!r}: range {net} does not match declared prefix /{request.prefix_length}"
            )
        if not net.subnet_of(block):
            problems.append(f"segment {request.name!r}: range {net} is outside of {block}")
        for other_name, other in allocated.items():
            if net.overlaps(other):
                problems.append(f"segment {request.name!r}: range {net} overlaps segment {other_name!r} ({other})")

        allocated[request.name] = net

    for request in requests:
        if request.cidr is not None:
            continue

        if request.prefix_length < block.prefixlen or request.prefix_length > block.max_prefixlen:
            problems.append(
                f"segment {request.name!r}: prefix /{request.prefix_length} cannot be carved out of {block}"
            )
            continue

        candidate = next(
            (
                net
                for net in block.subnets(new_prefix=request.prefix_length)
                if not any(net.overlaps(other) for other in allocated.values())
            ),
            None,
        )
        if candidate is None:
            problems.append(f"segment {request.name!r}: no free /{request.prefix_length} left in {block}")
            continue

        allocated[request.name] = candidate

    if problems:
        raise nlbtopo.StructuralError(problems)

    return [(request, allocated[request.name]) for request in requests]


def define_network(
    name: str,
    cidr_block: str,
    requests: typing.Sequence[SegmentRequest],
    availability_zone: str | None = None,
) -> tuple[Network, list[Segment]]:
    network = Network(
        id=ResourceId(nlbtopo.ResourceKind.NETWORK, name),
        label=name,
        cidr=typing.cast(ipaddress.IPv4Network, ipaddress.ip_network(cidr_block)),
    )

    segments = [
        Segment(
            id=ResourceId(nlbtopo.ResourceKind.SEGMENT, f"{name}-{request.name}"),
            label=f"{name}-{request.name}",
            network=network.id,
            segment_type=request.segment_type,
            cidr=net,
            internet_route=request.segment_type == nlbtopo.SegmentType.PUBLIC,
            availability_zone=availability_zone,
        )
        for request, net in partition(network.cidr, requests)
    ]

    return network, segments
