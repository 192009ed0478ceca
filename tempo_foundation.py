"""
Tempograph Foundation - the activation engine.

Implements the temporal layer of an associative spiking network: trapezoidal
integration profiles, kernel-weighted integrators, threshold integrators that
schedule their own firing, plastic edge distributions, and the node kinds that
tie them together.

Design principles:
    - Event driven: every firing and contribution is a task on the global
      virtual-time scheduler; nothing runs on wall-clock time.
    - Sparse: edges live in per-node dicts keyed by (node, profile).
    - Deterministic: identical driver input yields identical weight
      trajectories, since the scheduler breaks ties by insertion order.

Usage::

    from tempo_clusters import BiCluster
    from tempo_scheduler import scheduler

    cluster = BiCluster()
    a, b = cluster.create_node(), cluster.create_node()
    a.then(b)
    a.activate()
    scheduler.fast_forward_until_idle()   # b fires 10 ticks later
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    NamedTuple,
    Optional,
    Tuple,
)

import tempo_scheduler
from tempo_config import EngineConfig
from tempo_scheduler import InvalidTime  # noqa: F401  (re-exported)

logger = logging.getLogger("tempograph.engine")


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

THRESHOLD = 1.0
THRESHOLD_MARGIN = 0.2
DEFAULT_COEFFICIENT = THRESHOLD + THRESHOLD_MARGIN
# Weights at or below this magnitude are zeroed; zero-weight edges are dead.
DEAD_WEIGHT = 1e-6
SMOOTHING_EPSILON = 1e-9


# ---------------------------------------------------------------------------
# Engine-wide defaults
# ---------------------------------------------------------------------------

_settings = EngineConfig()


def configure(engine: Optional[EngineConfig] = None) -> None:
    """Install engine defaults; ``None`` restores the built-in ones.

    Only objects created afterwards pick up the new values.
    """
    global _settings
    _settings = engine if engine is not None else EngineConfig()


def settings() -> EngineConfig:
    return _settings


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class TooManyPriors(ValueError):
    """A conjunction over this many priors could fire on a strict subset."""

    def __init__(self, count: int):
        super().__init__(
            f"Too many priors ({count}) to guarantee reliable conjunction. "
            "Recommend staging the evaluation into a tree."
        )
        self.count = count


class PlasticityOutOfRange(ValueError):
    def __init__(self, plasticity: float):
        super().__init__(f"Plasticity ({plasticity}) must be in [0, 1].")
        self.plasticity = plasticity


class UnknownKey(KeyError):
    """Raised by ``Context.require`` when the key is not bound."""

    def __init__(self, context: "Context", missing_key: Any):
        super().__init__(f"Context missing required key {missing_key!r}")
        self.index = dict(context.index)
        self.missing_key = missing_key


def is_safe_conjunction(count: int) -> bool:
    """Whether ``count`` priors sharing (THRESHOLD + MARGIN) stay below
    THRESHOLD when any one of them is missing."""
    coefficient = (THRESHOLD + THRESHOLD_MARGIN) / count
    partial = coefficient * (count - 1)
    return partial < THRESHOLD and not math.isclose(partial, THRESHOLD)


# ---------------------------------------------------------------------------
# Integration profiles
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IntegrationProfile:
    """Trapezoidal time kernel.

    The kernel rises linearly from 0 to 1 over ``ramp_up`` ticks, holds at 1
    for ``period`` ticks, then falls back to 0 over ``ramp_down`` ticks.
    Profiles are immutable and compare by value.
    """

    ramp_up: int
    period: int
    ramp_down: int

    def __post_init__(self):
        if self.ramp_up <= 0 or self.ramp_down <= 0 or self.period < 0:
            raise ValueError(
                f"Invalid profile ramp_up={self.ramp_up} period={self.period} "
                f"ramp_down={self.ramp_down}"
            )

    @property
    def delay(self) -> int:
        return self.ramp_up

    @property
    def default_interval(self) -> int:
        """Step used to pace synthetic chains of nodes."""
        return self.period // 8

    @property
    def support(self) -> int:
        return self.ramp_up + self.period + self.ramp_down

    def kernel(self, elapsed: float) -> float:
        if elapsed <= 0 or elapsed >= self.support:
            return 0.0
        if elapsed < self.ramp_up:
            return elapsed / self.ramp_up
        elapsed -= self.ramp_up
        if elapsed <= self.period:
            return 1.0
        elapsed -= self.period
        return 1.0 - elapsed / self.ramp_down

    def breakpoints(self, origin: int) -> Tuple[int, int, int, int]:
        rise = origin + self.ramp_up
        fall = rise + self.period
        return origin, rise, fall, fall + self.ramp_down


TRANSIENT = IntegrationProfile(ramp_up=10, period=40, ramp_down=10)
TWOGRAM = IntegrationProfile(ramp_up=20, period=120, ramp_down=40)


# ---------------------------------------------------------------------------
# Integrators
# ---------------------------------------------------------------------------

class Impulse(NamedTuple):
    origin: int
    magnitude: float
    profile: IntegrationProfile


class Integrator:
    """Sum of kernel-weighted impulses.

    Each impulse remembers the profile it was added under.  ``evaluate`` uses
    those profiles unless a query profile is given, in which case every
    impulse is read through that kernel instead (a trace asked how active
    its node was over a ``TWOGRAM`` window, for example).
    """

    def __init__(self, default_profile: IntegrationProfile = TRANSIENT):
        self.default_profile = default_profile
        self._impulses: List[Impulse] = []
        self._horizon = max(default_profile.support, TWOGRAM.support)

    def __len__(self) -> int:
        return len(self._impulses)

    @property
    def impulses(self) -> Tuple[Impulse, ...]:
        return tuple(self._impulses)

    def add(
        self,
        t: int,
        magnitude: float,
        profile: Optional[IntegrationProfile] = None,
    ) -> None:
        """Add an impulse whose kernel starts at tick ``t``."""
        profile = profile or self.default_profile
        self._horizon = max(self._horizon, profile.support)
        self._impulses.append(Impulse(t, magnitude, profile))
        self._discard_expired(t)

    def _discard_expired(self, t: int) -> None:
        horizon = self._horizon + (_settings.impulse_retention or 0)
        if any(t - imp.origin > horizon for imp in self._impulses):
            self._impulses = [
                imp for imp in self._impulses if t - imp.origin <= horizon
            ]

    def evaluate(self, t: int, profile: Optional[IntegrationProfile] = None) -> float:
        if profile is not None and profile.support > self._horizon:
            self._horizon = profile.support
        total = 0.0
        for imp in self._impulses:
            kernel = profile or imp.profile
            total += imp.magnitude * kernel.kernel(t - imp.origin)
        return total

    def breakpoints(self, after: int) -> List[int]:
        """Sorted ticks after ``after`` where the value changes slope."""
        ticks = set()
        for imp in self._impulses:
            ticks.update(bp for bp in imp.profile.breakpoints(imp.origin) if bp > after)
        return sorted(ticks)

    def load(self, impulses: List[Impulse]) -> None:
        """Replace all impulses (used when restoring snapshots)."""
        self._impulses = list(impulses)
        for imp in self._impulses:
            self._horizon = max(self._horizon, imp.profile.support)


class ThresholdIntegrator(Integrator):
    """Integrator that schedules ``on_threshold`` when its value crosses
    ``THRESHOLD`` upward.

    Every add recomputes the next crossing in closed form over the
    piecewise-linear sum.  A changed crossing bumps the generation token, so
    any fire task already queued for the old crossing becomes a no-op when it
    runs.  After firing, the integrator stays latched until the first tick
    its value is below threshold; only a fresh upward crossing fires again.
    """

    def __init__(
        self,
        on_threshold: Callable[[], None],
        default_profile: IntegrationProfile = TRANSIENT,
    ):
        super().__init__(default_profile)
        self.on_threshold = on_threshold
        self._generation = 0
        self._pending: Optional[Tuple[int, int]] = None
        self._latched = False
        self._release_at: Optional[int] = None
        self._epoch = tempo_scheduler.scheduler.epoch

    @property
    def scheduled_at(self) -> Optional[int]:
        if self._pending is None or self._epoch != tempo_scheduler.scheduler.epoch:
            return None
        return self._pending[0]

    def add(
        self,
        t: int,
        magnitude: float,
        profile: Optional[IntegrationProfile] = None,
    ) -> None:
        super().add(t, magnitude, profile)
        self._reschedule(tempo_scheduler.scheduler.now())

    def _scan(self, now: int) -> Tuple[Optional[int], Optional[int]]:
        """Walk the breakpoints from ``now``.

        Returns ``(release, crossing)``: the first tick at which a latched
        integrator drops below THRESHOLD, and the first upward crossing.
        """
        if self._latched and self._release_at is not None and self._release_at <= now:
            self._latched = False
        latched = self._latched
        release: Optional[int] = None
        prev_t: Optional[int] = None
        prev_v = 0.0
        for x in [now] + self.breakpoints(now):
            v = self.evaluate(x)
            if latched:
                if v < THRESHOLD:
                    latched = False
                    if prev_t is None:
                        release = now
                    else:
                        drop = prev_t + (prev_v - THRESHOLD) * (x - prev_t) / (prev_v - v)
                        release = min(x, max(prev_t + 1, math.floor(drop + 1e-9) + 1))
            elif v >= THRESHOLD:
                if prev_t is None:
                    return release, now
                crossing = prev_t + (THRESHOLD - prev_v) * (x - prev_t) / (v - prev_v)
                return release, min(x, max(prev_t + 1, math.ceil(crossing - 1e-9)))
            prev_t, prev_v = x, v
        return release, None

    def next_threshold(self, now: int) -> Optional[int]:
        """First tick >= ``now`` at which the value crosses THRESHOLD
        upward, or None if it never does under the current impulses."""
        return self._scan(now)[1]

    def _reschedule(self, now: int) -> None:
        epoch = tempo_scheduler.scheduler.epoch
        if self._epoch != epoch:
            # The scheduler was reset: queued fires and the latch are gone.
            self._epoch = epoch
            self._pending = None
            self._latched = False
            self._release_at = None
        release, at = self._scan(now)
        self._release_at = release if self._latched else None
        if at == self.scheduled_at:
            return
        self._generation += 1
        if at is None:
            self._pending = None
            return
        token = self._generation
        self._pending = (at, token)
        tempo_scheduler.scheduler.schedule_at(at, lambda: self._fire(token))

    def _fire(self, token: int) -> None:
        if self._pending is None or self._pending[1] != token:
            return
        self._pending = None
        self._latched = True
        self.on_threshold()
        self._reschedule(tempo_scheduler.scheduler.now())


# ---------------------------------------------------------------------------
# Distribution
# ---------------------------------------------------------------------------

class Distribution:
    """Edge weight plus a smoothing estimate of reinforcement magnitudes.

    ``reinforce`` keeps an exponential moving mean and variance of ``|delta|``
    and damps each step by ``clamp(1 - stddev / |mean|, 0, 1)``: noisy
    reinforcement moves the weight less than consistent reinforcement.
    Until two samples have been seen the raw delta is applied.
    """

    def __init__(self, weight: float = 0.0, alpha: Optional[float] = None):
        self.alpha = _settings.smoothing_alpha if alpha is None else alpha
        self.weight = 0.0
        self.mean = 0.0
        self.variance = 0.0
        self.samples = 0
        self.set(weight)

    def __repr__(self) -> str:
        return f"Distribution(weight={self.weight:.4g}, samples={self.samples})"

    def _settle(self) -> None:
        if abs(self.weight) <= DEAD_WEIGHT:
            self.weight = 0.0

    def set(self, weight: float) -> None:
        self.weight = float(weight)
        self.mean = 0.0
        self.variance = 0.0
        self.samples = 0
        self._settle()

    def scale(self, factor: float) -> None:
        self.weight *= factor
        self._settle()

    def reinforce(self, delta: float) -> None:
        if delta == 0:
            return
        magnitude = abs(delta)
        if self.samples == 0:
            self.mean = magnitude
            self.variance = 0.0
        else:
            diff = magnitude - self.mean
            increment = self.alpha * diff
            self.mean += increment
            self.variance = (1.0 - self.alpha) * (self.variance + diff * increment)
        self.samples += 1

        if self.samples >= 2:
            damping = 1.0 - math.sqrt(self.variance) / (abs(self.mean) + SMOOTHING_EPSILON)
            delta *= min(1.0, max(0.0, damping))
        self.weight += delta
        self._settle()

    @property
    def stddev(self) -> float:
        return math.sqrt(self.variance)


# ---------------------------------------------------------------------------
# Edges and connection maps
# ---------------------------------------------------------------------------

class Edge:
    """Directed prior → posterior link under one integration profile."""

    def __init__(
        self,
        prior: "Prior",
        posterior: "Posterior",
        profile: IntegrationProfile = TRANSIENT,
        distribution: Optional[Distribution] = None,
    ):
        self.prior = prior
        self.posterior = posterior
        self.profile = profile
        self.distribution = distribution or Distribution()

    def __repr__(self) -> str:
        return (
            f"Edge({self.prior.node_id} -> {self.posterior.node_id}, "
            f"weight={self.weight:.4g})"
        )

    @property
    def weight(self) -> float:
        return self.distribution.weight

    def activate(self, t: int) -> None:
        """Deliver this edge's contribution ``profile.delay`` ticks after ``t``.

        The contribution's kernel starts at ``t``, so it arrives at full
        magnitude.
        """
        weight = self.distribution.weight
        posterior = self.posterior
        profile = self.profile
        tempo_scheduler.scheduler.schedule_at(
            t + profile.delay,
            lambda: posterior.integrator.add(t, weight, profile),
        )


class Posteriors:
    """Outgoing edges of a prior, keyed by (posterior, profile).

    Iteration follows insertion order and is safe against removal.
    """

    def __init__(self, owner: "Prior"):
        self._owner = owner
        self._edges: Dict[Tuple["Posterior", IntegrationProfile], Edge] = {}

    def __len__(self) -> int:
        return len(self._edges)

    def __iter__(self) -> Iterator[Edge]:
        return iter(list(self._edges.values()))

    def __contains__(self, key: Tuple["Posterior", IntegrationProfile]) -> bool:
        return key in self._edges

    def get(
        self, posterior: "Posterior", profile: IntegrationProfile = TRANSIENT
    ) -> Optional[Edge]:
        return self._edges.get((posterior, profile))

    def get_edge(
        self, posterior: "Posterior", profile: IntegrationProfile = TRANSIENT
    ) -> Edge:
        """Return the edge to ``posterior`` under ``profile``, creating a
        zero-weight one if absent."""
        edge = self._edges.get((posterior, profile))
        if edge is None:
            edge = Edge(self._owner, posterior, profile)
            self._edges[(posterior, profile)] = edge
            posterior.priors._add(edge)
        return edge

    def remove(self, edge: Edge) -> None:
        if self._edges.pop((edge.posterior, edge.profile), None) is not None:
            edge.posterior.priors._discard(edge)
            logger.debug("Removed dead edge %r", edge)

    def prune_dead(self) -> int:
        dead = [edge for edge in self._edges.values() if edge.distribution.weight == 0]
        for edge in dead:
            self.remove(edge)
        return len(dead)


class Priors:
    """Incoming edges of a posterior, keyed by (prior, profile)."""

    def __init__(self, owner: "Posterior"):
        self._owner = owner
        self._edges: Dict[Tuple["Prior", IntegrationProfile], Edge] = {}

    def __len__(self) -> int:
        return len(self._edges)

    def __iter__(self) -> Iterator[Edge]:
        return iter(list(self._edges.values()))

    def get(
        self, prior: "Prior", profile: IntegrationProfile = TRANSIENT
    ) -> Optional[Edge]:
        return self._edges.get((prior, profile))

    def _add(self, edge: Edge) -> None:
        self._edges[(edge.prior, edge.profile)] = edge

    def _discard(self, edge: Edge) -> None:
        self._edges.pop((edge.prior, edge.profile), None)


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

class Node:
    """Base node: a trace of its own activations and a recency link in its
    cluster.

    Nodes are created through their cluster (``cluster.create_node()``); the
    cluster only holds them weakly, so whoever builds the network owns them.
    """

    def __init__(self, cluster: Any = None, node_id: Optional[str] = None):
        self.node_id = node_id or str(uuid.uuid4())
        self.cluster = cluster
        self.trace = Integrator(TRANSIENT)
        self.last_activation: Optional[int] = None
        self.comment: Optional[str] = None
        self._link = cluster._register(self) if cluster is not None else None

    def __repr__(self) -> str:
        label = self.comment or self.node_id[:8]
        return f"{type(self).__name__}({label})"

    def activate(self) -> None:
        """Fire this node at the current tick."""
        t = tempo_scheduler.scheduler.now()
        self.trace.add(t, 1.0)
        self.last_activation = t
        if self.cluster is not None:
            self.cluster._promote(self, t)
        self._on_activate(t)

    def _on_activate(self, t: int) -> None:
        pass


class Prior(Node):
    """Node with outgoing edges."""

    def __init__(self, cluster: Any = None, node_id: Optional[str] = None):
        super().__init__(cluster, node_id)
        self.posteriors = Posteriors(self)

    def _on_activate(self, t: int) -> None:
        super()._on_activate(t)
        for edge in self.posteriors:
            posterior = edge.posterior
            # LTD from reverse STDP: the posterior fired shortly before us.
            edge.distribution.reinforce(
                -posterior.trace.evaluate(t, edge.profile) * posterior.plasticity
            )
            if edge.distribution.weight == 0:
                self.posteriors.remove(edge)
            else:
                edge.activate(t)

    def set_coefficient(
        self,
        posterior: "Posterior",
        coefficient: float,
        profile: IntegrationProfile = TRANSIENT,
    ) -> Edge:
        edge = self.posteriors.get_edge(posterior, profile)
        edge.distribution.set(coefficient)
        return edge

    def then(self, *posteriors: "Posterior") -> "Posterior":
        """Make each posterior fire whenever this node fires.

        Returns the last posterior so calls can be chained.
        """
        for posterior in posteriors:
            self.set_coefficient(posterior, DEFAULT_COEFFICIENT)
        return posteriors[-1]

    def inhibit(self, posterior: "Posterior") -> None:
        self.set_coefficient(posterior, -1.0)


class Posterior(Node):
    """Node with incoming edges and a threshold integrator."""

    def __init__(self, cluster: Any = None, node_id: Optional[str] = None):
        super().__init__(cluster, node_id)
        self.priors = Priors(self)
        self.integrator = ThresholdIntegrator(self.activate)

    @property
    def plasticity(self) -> float:
        if self.cluster is None:
            return _settings.default_plasticity
        return self.cluster.plasticity

    def conjunction(self, *priors: Prior) -> "Posterior":
        """Fire only when every prior fires within one ``TRANSIENT`` window.

        Raises:
            TooManyPriors: if n - 1 of the priors could already cross
                threshold.
        """
        if not priors:
            raise ValueError("conjunction requires at least one prior")
        if not is_safe_conjunction(len(priors)):
            raise TooManyPriors(len(priors))
        coefficient = (THRESHOLD + THRESHOLD_MARGIN) / len(priors)
        for prior in priors:
            prior.set_coefficient(self, coefficient)
        return self

    def disjunction(self, *priors: Prior) -> "Posterior":
        for prior in priors:
            prior.then(self)
        return self

    def inhibitor(self, prior: Prior) -> "Posterior":
        prior.inhibit(self)
        return self


class BiNode(Prior, Posterior):
    """Node that is both a prior and a posterior."""


class InputNode(Prior):
    """Externally driven node; never the target of an edge."""


class ActionNode(BiNode):
    """Runs a side effect on activation.

    The action's return value is ignored.  If it raises, the error is logged
    and the firing still completes.
    """

    def __init__(
        self,
        cluster: Any = None,
        action: Optional[Callable[[], Any]] = None,
        node_id: Optional[str] = None,
    ):
        self.action = action
        super().__init__(cluster, node_id)

    def _on_activate(self, t: int) -> None:
        if self.action is not None:
            try:
                self.action()
            except Exception:
                logger.exception("Action of %r failed at tick %d", self, t)
        super()._on_activate(t)


class DataNode(BiNode):
    """Node carrying an immutable payload."""

    def __init__(
        self,
        cluster: Any = None,
        data: Any = None,
        node_id: Optional[str] = None,
    ):
        self._data = data
        super().__init__(cluster, node_id)

    @property
    def data(self) -> Any:
        return self._data


class MutableDataNode(DataNode):
    """Data node whose payload the driver may replace.

    When ``notify`` is requested, ``on_update`` fires after the payload
    changes so downstream chains can react.
    """

    def __init__(
        self,
        cluster: Any = None,
        data: Any = None,
        node_id: Optional[str] = None,
    ):
        super().__init__(cluster, data, node_id)
        self.on_update = InputNode()

    @property
    def data(self) -> Any:
        return self._data

    @data.setter
    def data(self, value: Any) -> None:
        self._data = value

    def set_data(self, value: Any, notify: bool = True) -> None:
        self._data = value
        if notify:
            self.on_update.activate()


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

class Context:
    """Key → node bindings that a driver resolves before activating inputs."""

    def __init__(self, parent: Optional["Context"] = None):
        self.parent = parent
        self.index: Dict[Any, Any] = {}

    def bind(self, key: Any, value: Any) -> None:
        self.index[key] = value

    def get(self, key: Any, default: Any = None) -> Any:
        if key in self.index:
            return self.index[key]
        if self.parent is not None:
            return self.parent.get(key, default)
        return default

    def require(self, key: Any) -> Any:
        value = self.get(key)
        if value is None:
            raise UnknownKey(self, key)
        return value
