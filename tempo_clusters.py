"""
Tempograph Clusters - typed node groups, recency, and bulk association.

A cluster owns a recency queue of weak references to its nodes.  Activating a
node promotes it to the front of the queue and notifies the cluster's
activation handlers, so walking a cluster front to back visits nodes from the
most to the least recently fired.  Bulk operators use that order to find the
nodes that are still "hot" under some profile and rewrite edge weights in
proportion to their traces.

Usage::

    from tempo_clusters import BiCluster, associate, disassociate

    letters, words = BiCluster("letters"), BiCluster("words")
    ...                                  # fire some letters, then a word
    associate(letters, words)            # wire the active letters to the word
    disassociate(letters, words)         # and undo it later
"""

from __future__ import annotations

import logging
import weakref
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Iterable,
    Iterator,
    List,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

import tempo_scheduler
from tempo_foundation import (
    THRESHOLD,
    THRESHOLD_MARGIN,
    TRANSIENT,
    ActionNode,
    BiNode,
    DataNode,
    InputNode,
    IntegrationProfile,
    MutableDataNode,
    Node,
    PlasticityOutOfRange,
    Posterior,
    Prior,
    TooManyPriors,
    is_safe_conjunction,
    settings,
)

logger = logging.getLogger("tempograph.clusters")

T = TypeVar("T")

ActivationHandler = Callable[[Node, int], None]


# ---------------------------------------------------------------------------
# Recency queue
# ---------------------------------------------------------------------------

class RecencyQueue(Generic[T]):
    """Doubly linked list with O(1) promotion to the front.

    New links are appended at the back (never-activated entries are the
    oldest).  Iteration in either direction tolerates removal of the link
    currently being visited.
    """

    class Link(Generic[T]):
        __slots__ = ("value", "prev", "next", "queue")

        def __init__(self, queue: "RecencyQueue[T]", value: T):
            self.queue = queue
            self.value = value
            self.prev: Optional["RecencyQueue.Link[T]"] = None
            self.next: Optional["RecencyQueue.Link[T]"] = None

        def promote(self) -> None:
            if self.queue is not None:
                self.queue.promote(self)

        def remove(self) -> None:
            if self.queue is not None:
                self.queue.remove(self)

    def __init__(self):
        self._head: Optional[RecencyQueue.Link[T]] = None
        self._tail: Optional[RecencyQueue.Link[T]] = None
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator["RecencyQueue.Link[T]"]:
        link = self._head
        while link is not None:
            following = link.next
            yield link
            link = following

    def reversed(self) -> Iterator["RecencyQueue.Link[T]"]:
        link = self._tail
        while link is not None:
            preceding = link.prev
            yield link
            link = preceding

    def append(self, value: T) -> "RecencyQueue.Link[T]":
        link = RecencyQueue.Link(self, value)
        link.prev = self._tail
        if self._tail is not None:
            self._tail.next = link
        else:
            self._head = link
        self._tail = link
        self._size += 1
        return link

    def _unlink(self, link: "RecencyQueue.Link[T]") -> None:
        if link.prev is not None:
            link.prev.next = link.next
        else:
            self._head = link.next
        if link.next is not None:
            link.next.prev = link.prev
        else:
            self._tail = link.prev
        link.prev = link.next = None

    def promote(self, link: "RecencyQueue.Link[T]") -> None:
        if link is self._head:
            return
        self._unlink(link)
        link.next = self._head
        if self._head is not None:
            self._head.prev = link
        self._head = link
        if self._tail is None:
            self._tail = link

    def remove(self, link: "RecencyQueue.Link[T]") -> None:
        if link.queue is not self:
            return
        self._unlink(link)
        link.queue = None
        self._size -= 1


# ---------------------------------------------------------------------------
# Clusters
# ---------------------------------------------------------------------------

class Cluster:
    """Typed group of nodes ordered by recency of activation.

    Nodes are held weakly; entries whose node has been reclaimed are dropped
    lazily by iteration and by ``clean()``.
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name or type(self).__name__
        self._activations: RecencyQueue[weakref.ref] = RecencyQueue()
        self._handlers: List[ActivationHandler] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, size={len(self._activations)})"

    def __len__(self) -> int:
        return len(self._activations)

    def _register(self, node: Node) -> RecencyQueue.Link:
        return self._activations.append(weakref.ref(node))

    def _promote(self, node: Node, t: int) -> None:
        # Promote before any side effect so handlers see the updated order.
        node._link.promote()
        for handler in list(self._handlers):
            handler(node, t)

    # -- Observation -------------------------------------------------------

    def register_activation_handler(self, handler: ActivationHandler) -> None:
        """Call ``handler(node, tick)`` synchronously on every activation.

        Handlers must not drive the scheduler.
        """
        self._handlers.append(handler)

    def unregister_activation_handler(self, handler: ActivationHandler) -> None:
        self._handlers.remove(handler)

    # -- Iteration & reclamation --------------------------------------------

    def activations(self) -> Iterator[Any]:
        """Live nodes, most recently activated first."""
        for link in self._activations:
            node = link.value()
            if node is None:
                self._activations.remove(link)
                continue
            yield node

    def __iter__(self) -> Iterator[Any]:
        return self.activations()

    def clean(self) -> int:
        """Drop reclaimed nodes and prune dead edges of live priors.

        Returns:
            Number of reclaimed entries removed.
        """
        removed = 0
        pruned = 0
        for link in self._activations.reversed():
            node = link.value()
            if node is None:
                self._activations.remove(link)
                removed += 1
            elif isinstance(node, Prior):
                pruned += node.posteriors.prune_dead()
        if removed or pruned:
            logger.debug(
                "Cleaned %s: %d reclaimed nodes, %d dead edges", self.name, removed, pruned
            )
        return removed


class PosteriorCluster(Cluster):
    """Cluster whose nodes receive edges and therefore learn."""

    def __init__(self, name: Optional[str] = None, plasticity: Optional[float] = None):
        super().__init__(name)
        self._plasticity = settings().default_plasticity
        if plasticity is not None:
            self.plasticity = plasticity

    @property
    def plasticity(self) -> float:
        return self._plasticity

    @plasticity.setter
    def plasticity(self, value: float) -> None:
        if value < 0 or value > 1:
            raise PlasticityOutOfRange(value)
        self._plasticity = float(value)


class InputCluster(Cluster):
    """Externally driven nodes; never reinforced as posteriors."""

    def create_node(self, node_id: Optional[str] = None) -> InputNode:
        return InputNode(self, node_id)


class BiCluster(PosteriorCluster):
    def create_node(self, node_id: Optional[str] = None) -> BiNode:
        return BiNode(self, node_id)


class ActionCluster(PosteriorCluster):
    def create_node(
        self, action: Callable[[], Any], node_id: Optional[str] = None
    ) -> ActionNode:
        return ActionNode(self, action, node_id)


class DataCluster(PosteriorCluster):
    def create_node(self, data: Any = None, node_id: Optional[str] = None) -> DataNode:
        return DataNode(self, data, node_id)

    def create_mutable_node(
        self, data: Any = None, node_id: Optional[str] = None
    ) -> MutableDataNode:
        return MutableDataNode(self, data, node_id)


class StmCluster(BiCluster):
    """Short-term memory register.

    ``address`` is the node whose firing selects this register; its outgoing
    edges are what ``scale_posteriors`` and ``associate`` act on.
    """

    def __init__(self, name: Optional[str] = None, plasticity: Optional[float] = None):
        super().__init__(name, plasticity)
        self.address = self.create_node()
        self.address.comment = f"{self.name}.address"


# ---------------------------------------------------------------------------
# Trace-weighted traversal
# ---------------------------------------------------------------------------

class PriorClusterProfile:
    """A prior cluster together with the profiles its traces are read under."""

    def __init__(self, cluster: Cluster, *profiles: IntegrationProfile):
        self.cluster = cluster
        self.profiles: Tuple[IntegrationProfile, ...] = profiles or (TRANSIENT,)

    def __repr__(self) -> str:
        return f"PriorClusterProfile({self.cluster.name!r}, {list(self.profiles)})"

    class ListBuilder:
        """Builds prior lists that share a common set of base profiles."""

        def __init__(self):
            self._entries: List[PriorClusterProfile] = []
            self._base: Tuple[IntegrationProfile, ...] = (TRANSIENT,)

        def base_profiles(self, *profiles: IntegrationProfile) -> "PriorClusterProfile.ListBuilder":
            self._base = profiles
            return self

        def add(
            self, cluster: Cluster, *additional: IntegrationProfile
        ) -> "PriorClusterProfile.ListBuilder":
            self._entries.append(PriorClusterProfile(cluster, *self._base, *additional))
            return self

        def build(self) -> List["PriorClusterProfile"]:
            return list(self._entries)


PriorSpec = Union[Cluster, Iterable[PriorClusterProfile]]


def _as_prior_profiles(priors: PriorSpec) -> List[PriorClusterProfile]:
    if isinstance(priors, Cluster):
        return [PriorClusterProfile(priors, TRANSIENT)]
    return list(priors)


def for_each_by_trace(
    cluster: Cluster,
    profile: IntegrationProfile,
    t: int,
    action: Callable[[Any, float], None],
) -> None:
    """Call ``action(node, trace)`` for each recently active node with a
    positive trace under ``profile`` at ``t``.

    The walk stops at the first node last activated at or before
    ``t - profile.period``.
    """
    horizon = t - profile.period
    for node in cluster.activations():
        if node.last_activation is None or node.last_activation <= horizon:
            break
        trace = node.trace.evaluate(t, profile)
        if trace > 0:
            action(node, trace)


def weight_by_trace(value: float, identity: float, trace: float) -> float:
    """Interpolate from ``identity`` toward ``value`` by a margin-tolerant
    trace."""
    tolerant_trace = min(1.0, trace * (1.0 + THRESHOLD_MARGIN))
    return identity + (value - identity) * tolerant_trace


# ---------------------------------------------------------------------------
# Conjunction junction
# ---------------------------------------------------------------------------

class ConjunctionJunction:
    """Accumulates co-active priors and wires them to a posterior so that
    the whole set firing together crosses threshold.

    Args:
        check_safe: Refuse to build conjunctions a strict subset could
            trigger.  Defaults to the engine's ``safe_conjunction_check``.
    """

    def __init__(self, check_safe: Optional[bool] = None):
        self.check_safe = (
            settings().safe_conjunction_check if check_safe is None else check_safe
        )
        self._traces: Dict[Tuple[Prior, IntegrationProfile], float] = {}

    def __len__(self) -> int:
        return len(self._traces)

    def add(
        self,
        node: Prior,
        profile: IntegrationProfile = TRANSIENT,
        trace: float = 1.0,
    ) -> None:
        key = (node, profile)
        self._traces[key] = self._traces.get(key, 0.0) + trace

    def build(self, posterior: Posterior, weight: float = 1.0) -> Posterior:
        """Reinforce every accumulated edge toward
        ``weight * (THRESHOLD + MARGIN) / N``, scaled by its trace.

        Returns:
            ``posterior``, for chaining.
        """
        entries = [
            (key, trace)
            for key, trace in self._traces.items()
            if trace > 0 and key[0] is not posterior
        ]
        if not entries:
            return posterior
        if self.check_safe and not is_safe_conjunction(len(entries)):
            raise TooManyPriors(len(entries))

        target = weight * (THRESHOLD + THRESHOLD_MARGIN) / len(entries)
        for (node, profile), trace in entries:
            distribution = node.posteriors.get_edge(posterior, profile).distribution
            current = distribution.weight
            distribution.reinforce(weight_by_trace(target, current, trace) - current)
        return posterior


# ---------------------------------------------------------------------------
# Bulk association operators
# ---------------------------------------------------------------------------

def associate_posterior(
    priors: PriorSpec, posterior: Posterior, t: int, weight: float
) -> None:
    """Conjoin every prior active at ``t`` onto ``posterior``."""
    junction = ConjunctionJunction()
    for prior in _as_prior_profiles(priors):
        for profile in prior.profiles:
            for_each_by_trace(
                prior.cluster,
                profile,
                t,
                lambda node, trace, profile=profile: junction.add(node, profile, trace),
            )
    junction.build(posterior, weight)


def associate(
    priors: PriorSpec,
    posterior_cluster: Cluster,
    effective_time: Optional[int] = None,
) -> None:
    """Form conjunctive associations from active priors to each active
    posterior.

    Active posteriors are always found through a ``TRANSIENT`` window; each
    is associated with the priors active at its own last activation, at a
    weight equal to its trace.
    """
    prior_profiles = _as_prior_profiles(priors)
    t = tempo_scheduler.scheduler.now() if effective_time is None else effective_time
    for_each_by_trace(
        posterior_cluster,
        TRANSIENT,
        t,
        lambda posterior, posterior_trace: associate_posterior(
            prior_profiles, posterior, posterior.last_activation, posterior_trace
        ),
    )


def disassociate(prior_cluster: Cluster, posterior_cluster: Cluster) -> None:
    """Weaken edges from ``prior_cluster`` into each active posterior by the
    product of prior and posterior traces."""

    def weaken(posterior: Posterior, posterior_trace: float) -> None:
        for edge in posterior.priors:
            prior = edge.prior
            if prior.cluster is not prior_cluster:
                continue
            prior_trace = prior.trace.evaluate(posterior.last_activation, edge.profile)
            if prior_trace > 0:
                edge.distribution.reinforce(
                    weight_by_trace(-edge.weight, 0.0, prior_trace * posterior_trace)
                )

    for_each_by_trace(
        posterior_cluster, TRANSIENT, tempo_scheduler.scheduler.now(), weaken
    )


def disassociate_all(prior_cluster: Cluster) -> None:
    """Reinforce every outgoing edge of each active prior toward zero."""

    def clear(prior: Prior, trace: float) -> None:
        for edge in prior.posteriors:
            edge.distribution.reinforce(weight_by_trace(-edge.weight, 0.0, trace))

    for_each_by_trace(prior_cluster, TRANSIENT, tempo_scheduler.scheduler.now(), clear)


def scale_posteriors(prior_cluster: Cluster, factor: float) -> None:
    """Scale outgoing edges of active priors, fully by ``factor`` for
    strong traces and not at all for vanishing ones."""

    def scale(prior: Prior, trace: float) -> None:
        for edge in prior.posteriors:
            edge.distribution.scale(weight_by_trace(factor, 1.0, trace))

    for_each_by_trace(prior_cluster, TRANSIENT, tempo_scheduler.scheduler.now(), scale)


# ---------------------------------------------------------------------------
# Sequences
# ---------------------------------------------------------------------------

class Sequence:
    """Fluent builder for chains of execution nodes.

    Each step inserts a fresh node from ``cluster`` after the current tail,
    so steps fire one ``TRANSIENT.delay`` apart.
    """

    def __init__(self, head: Prior, cluster: BiCluster, tail: Optional[Prior] = None):
        self.head = head
        self.cluster = cluster
        self.tail = tail or head

    def _step(self) -> None:
        self.tail = self.tail.then(self.cluster.create_node())

    def then(self, posterior: Posterior) -> "Sequence":
        self._step()
        self.tail.then(posterior)
        return self

    def then_direct(self, node: BiNode) -> "Sequence":
        self.tail.then(node)
        return Sequence(self.head, self.cluster, node)

    def then_sequential(self, *posteriors: Optional[Posterior]) -> "Sequence":
        for posterior in posteriors:
            self._step()
            if posterior is not None:
                self.tail.then(posterior)
        return self

    def then_parallel(self, *posteriors: Posterior) -> "Sequence":
        self._step()
        for posterior in posteriors:
            self.tail.then(posterior)
        return self

    def then_delay(self, period: Optional[int] = None) -> "Sequence":
        """Append one step, or one step per ``TRANSIENT.default_interval``
        of ``period``.

        Each step still takes a full ``TRANSIENT.delay`` hop to fire, so the
        chain spans ``period * delay / default_interval`` ticks (twice
        ``period`` for ``TRANSIENT``).
        """
        if period is None:
            self._step()
            return self
        interval = TRANSIENT.default_interval
        elapsed = 0
        while elapsed < period:
            self._step()
            elapsed += interval
        return self
