"""
Tempograph Monitoring - telemetry snapshot, health summary, activation log.

Three layers:

1. ``get_telemetry()``: numeric snapshot of a set of clusters (node and edge
   counts, weight statistics, scheduler backlog).
2. ``health_context()``: the same snapshot rendered as one line of text.
3. ``ActivationLogger``: rotating JSON-lines log of engine events, able to
   subscribe to any cluster's activation stream.

Usage::

    from tempo_monitoring import ActivationLogger, health_context

    log = ActivationLogger(config)
    log.attach(words)
    ...
    print(health_context([letters, words]))
    log.close()
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

import tempo_scheduler
from tempo_clusters import Cluster
from tempo_config import TempoConfig
from tempo_foundation import Node, Prior

logger = logging.getLogger("tempograph.monitoring")


# ── Telemetry (Layer 1) ────────────────────────────────────────────────


@dataclass
class Telemetry:
    """Network statistics snapshot.

    Attributes:
        tick: Current scheduler tick.
        total_nodes: Live nodes across the clusters.
        total_edges: Outgoing edges of those nodes.
        dead_edges: Edges whose weight has been zeroed but not yet pruned.
        mean_weight: Mean edge weight.
        std_weight: Standard deviation of edge weights.
        pending_tasks: Tasks waiting in the scheduler.
    """

    tick: int = 0
    total_nodes: int = 0
    total_edges: int = 0
    dead_edges: int = 0
    mean_weight: float = 0.0
    std_weight: float = 0.0
    pending_tasks: int = 0


def get_telemetry(clusters: Iterable[Cluster]) -> Telemetry:
    weights: List[float] = []
    total_nodes = 0
    for cluster in clusters:
        for node in cluster.activations():
            total_nodes += 1
            if isinstance(node, Prior):
                weights.extend(edge.weight for edge in node.posteriors)

    sched = tempo_scheduler.scheduler
    w = np.asarray(weights, dtype=float)
    return Telemetry(
        tick=sched.now(),
        total_nodes=total_nodes,
        total_edges=len(weights),
        dead_edges=int(np.count_nonzero(w == 0)) if w.size else 0,
        mean_weight=float(np.mean(w)) if w.size else 0.0,
        std_weight=float(np.std(w)) if w.size else 0.0,
        pending_tasks=sched.pending(),
    )


# ── Health context (Layer 2) ───────────────────────────────────────────


def health_context(clusters: Iterable[Cluster]) -> str:
    """Human-readable one-line status of the given clusters."""
    t = get_telemetry(clusters)
    parts = [
        f"Tempograph @ tick {t.tick:,}: {t.total_nodes:,} nodes",
        f"{t.total_edges:,} edges",
    ]
    if t.total_edges:
        parts.append(f"mean weight {t.mean_weight:.3f} ± {t.std_weight:.3f}")
    if t.dead_edges:
        parts.append(f"{t.dead_edges} dead edges awaiting clean")
    if t.pending_tasks:
        parts.append(f"{t.pending_tasks} pending tasks")
    return ", ".join(parts)


# ── Activation log (Layer 3) ───────────────────────────────────────────


class ActivationLogger:
    """Rotating file logger for engine events.

    Writes one JSON object per line to ``activations.log`` in the configured
    log directory.

    Args:
        config: ``TempoConfig`` with monitoring parameters.
    """

    def __init__(self, config: TempoConfig) -> None:
        self._cfg = config.monitoring
        self._logger = logging.getLogger("tempograph.events")
        self._attached: Dict[int, Any] = {}
        self._handler: Optional[logging.Handler] = None
        self._setup_handler()

    @property
    def log_path(self) -> Path:
        return Path(self._cfg.log_dir).expanduser() / "activations.log"

    def _setup_handler(self) -> None:
        log_path = self.log_path
        log_path.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.handlers.RotatingFileHandler(
            str(log_path),
            maxBytes=self._cfg.max_log_size_mb * 1024 * 1024,
            backupCount=self._cfg.backup_count,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        self._logger.addHandler(handler)
        self._logger.setLevel(logging.INFO)
        self._handler = handler
        logger.debug("Activation log at %s", log_path)

    def log_event(self, event_type: str, data: Dict[str, Any]) -> None:
        event = {
            "timestamp": time.time(),
            "event": event_type,
            "data": data,
        }
        self._logger.info(json.dumps(event, default=str))

    def attach(self, cluster: Cluster) -> None:
        """Log every activation in ``cluster``."""
        if not self._cfg.log_activations or id(cluster) in self._attached:
            return

        def on_activation(node: Node, tick: int) -> None:
            self.log_event(
                "activation",
                {"cluster": cluster.name, "node": node.node_id, "tick": tick},
            )

        cluster.register_activation_handler(on_activation)
        self._attached[id(cluster)] = (cluster, on_activation)

    def detach(self, cluster: Cluster) -> None:
        entry = self._attached.pop(id(cluster), None)
        if entry is not None:
            cluster.unregister_activation_handler(entry[1])

    def close(self) -> None:
        for cluster, _ in list(self._attached.values()):
            self.detach(cluster)
        if self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None
