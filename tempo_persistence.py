"""
Tempograph Persistence - snapshot and restore of learned state.

Captures, for every live node in a set of clusters, its recency position,
last activation, trace impulses, and the weight and smoothing state of each
outgoing edge.  Snapshots are plain dicts written as msgpack (``.msgpack``)
or JSON (any other suffix).

Nodes and their callables cannot be serialized, so restore applies a snapshot
onto clusters that have been wired the same way with the same ``node_id``s.
Snapshots should be taken at quiescence: pending scheduler tasks are not
captured.

Usage::

    from tempo_persistence import checkpoint, restore

    checkpoint("state.msgpack", [letters, words])
    # ... rebuild the same network ...
    restore("state.msgpack", [letters, words])
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import msgpack

from tempo_clusters import Cluster
from tempo_foundation import Impulse, IntegrationProfile, Prior

logger = logging.getLogger("tempograph.persistence")

SNAPSHOT_VERSION = "1.0"


def _profile_to_list(profile: IntegrationProfile) -> List[int]:
    return [profile.ramp_up, profile.period, profile.ramp_down]


def _profile_from_list(data: List[int]) -> IntegrationProfile:
    return IntegrationProfile(*data)


def _serialize_node(node: Any, include_traces: bool) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "node_id": node.node_id,
        "last_activation": node.last_activation,
    }
    if include_traces:
        data["trace"] = [
            [imp.origin, imp.magnitude, _profile_to_list(imp.profile)]
            for imp in node.trace.impulses
        ]
    if isinstance(node, Prior):
        data["edges"] = [
            {
                "posterior": edge.posterior.node_id,
                "profile": _profile_to_list(edge.profile),
                "weight": edge.distribution.weight,
                "mean": edge.distribution.mean,
                "variance": edge.distribution.variance,
                "samples": edge.distribution.samples,
            }
            for edge in node.posteriors
        ]
    return data


def snapshot(clusters: Iterable[Cluster], include_traces: bool = True) -> Dict[str, Any]:
    """Capture the state of ``clusters`` as a serializable dict.

    Node lists are in recency order, most recent first.
    """
    return {
        "version": SNAPSHOT_VERSION,
        "clusters": [
            {
                "name": cluster.name,
                "nodes": [
                    _serialize_node(node, include_traces)
                    for node in cluster.activations()
                ],
            }
            for cluster in clusters
        ],
    }


def apply_snapshot(clusters: Iterable[Cluster], data: Dict[str, Any]) -> None:
    """Apply ``data`` onto identically wired ``clusters``.

    Raises:
        KeyError: if the snapshot names a cluster or node that is not present.
    """
    clusters = list(clusters)
    by_name = {cluster.name: cluster for cluster in clusters}
    nodes: Dict[str, Any] = {}
    for cluster in clusters:
        for node in cluster.activations():
            nodes[node.node_id] = node

    for entry in data.get("clusters", []):
        if entry["name"] not in by_name:
            raise KeyError(f"Cluster {entry['name']} not found")
        # Promote oldest first so the most recent ends up at the front.
        for nd in reversed(entry["nodes"]):
            if nd["node_id"] not in nodes:
                raise KeyError(f"Node {nd['node_id']} not found")
            node = nodes[nd["node_id"]]
            node.last_activation = nd.get("last_activation")
            if "trace" in nd:
                node.trace.load(
                    [
                        Impulse(origin, magnitude, _profile_from_list(profile))
                        for origin, magnitude, profile in nd["trace"]
                    ]
                )
            if node.last_activation is not None:
                node._link.promote()
            for ed in nd.get("edges", []):
                if ed["posterior"] not in nodes:
                    raise KeyError(f"Node {ed['posterior']} not found")
                edge = node.posteriors.get_edge(
                    nodes[ed["posterior"]], _profile_from_list(ed["profile"])
                )
                dist = edge.distribution
                dist.weight = ed["weight"]
                dist.mean = ed.get("mean", 0.0)
                dist.variance = ed.get("variance", 0.0)
                dist.samples = ed.get("samples", 0)


def checkpoint(
    path: str,
    clusters: Iterable[Cluster],
    include_traces: bool = True,
) -> None:
    """Save a snapshot (extension determines format: .msgpack or JSON)."""
    data = snapshot(clusters, include_traces)
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.suffix == ".msgpack":
        with open(target, "wb") as f:
            msgpack.pack(data, f, use_bin_type=True)
    else:
        with open(target, "w") as f:
            json.dump(data, f, indent=2)
    logger.info("Checkpoint written to %s", target)


def restore(path: str, clusters: Iterable[Cluster]) -> Optional[Dict[str, Any]]:
    """Load a snapshot from ``path`` and apply it onto ``clusters``."""
    source = Path(path).expanduser()
    if source.suffix == ".msgpack":
        with open(source, "rb") as f:
            data = msgpack.unpack(f, raw=False)
    else:
        with open(source, "r") as f:
            data = json.load(f)
    apply_snapshot(clusters, data)
    logger.info("Restored snapshot from %s", source)
    return data
