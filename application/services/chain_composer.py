import logging
from dataclasses import dataclass
from datetime import date, datetime

from application.services.registry import ProviderRegistry
from domain.models.currency import ChainLeg, ConversionChain, CurrencyPair
from infrastructure.store.rate_store import RateStore, Snapshot

logger = logging.getLogger(__name__)

_NEVER = datetime.min


@dataclass(frozen=True)
class _Edge:
    leg: ChainLeg
    priority: int

    @property
    def rank(self) -> tuple:
        record = self.leg.record
        # Stored direction beats a derived reciprocal of the same priority.
        return (self.priority, not self.leg.inverted, record.date,
                record.fetched_at.replace(tzinfo=None) if record.fetched_at else _NEVER)


@dataclass(frozen=True)
class _Path:
    edges: tuple[_Edge, ...] = ()

    @property
    def priority_score(self) -> int:
        return sum(edge.priority for edge in self.edges)

    @property
    def rank(self) -> tuple:
        inverted = sum(1 for edge in self.edges if edge.leg.inverted)
        oldest = min((edge.leg.record.date for edge in self.edges), default=date.max)
        return (self.priority_score, -inverted, oldest)

    def extend(self, edge: _Edge) -> '_Path':
        return _Path(self.edges + (edge,))

    def chain(self) -> ConversionChain:
        return ConversionChain(
            legs=tuple(edge.leg for edge in self.edges), priority_score=self.priority_score
        )


Graph = dict[str, dict[str, _Edge]]


class ChainComposer:
    """
    Finds a multi-hop conversion when no direct rate is cached.

    Breadth-first over currencies, so the fewest-hop chain always wins; among
    chains of that length the one with the highest summed provider priority is
    kept. Each currency is expanded at most once, so cyclic rate graphs terminate.
    """

    def __init__(
        self,
        store: RateStore,
        registry: ProviderRegistry,
        allow_inverse: bool = True,
        max_hops: int = 4,
    ):
        self.store = store
        self.registry = registry
        self.allow_inverse = allow_inverse
        self.max_hops = max_hops
        self._graph_cache: tuple[Snapshot, date | None, Graph] | None = None

    def compose(self, base: str, target: str, on: date | None = None) -> ConversionChain | None:
        if base == target:
            return None

        graph = self._graph(on)
        if base not in graph:
            return None

        best: dict[str, _Path] = {base: _Path()}
        visited = {base}
        frontier = [base]

        for _ in range(self.max_hops):
            reached: dict[str, _Path] = {}
            for node in frontier:
                path = best[node]
                for destination in sorted(graph.get(node, {})):
                    if destination in visited:
                        continue
                    candidate = path.extend(graph[node][destination])
                    current = reached.get(destination)
                    if current is None or candidate.rank > current.rank:
                        reached[destination] = candidate

            if not reached:
                break
            if target in reached:
                chain = reached[target].chain()
                logger.debug(
                    f"Composed {base}->{target} via {' -> '.join(chain.currencies)} "
                    f"({chain.hops} hops, priority {chain.priority_score})"
                )
                return chain

            visited.update(reached)
            best.update(reached)
            frontier = sorted(reached)

        logger.debug(f"No conversion chain from {base} to {target} within {self.max_hops} hops")
        return None

    def _graph(self, on: date | None) -> Graph:
        snapshot = self.store.snapshot()
        cached = self._graph_cache
        if cached is not None and cached[0] is snapshot and cached[1] == on:
            return cached[2]

        graph = self._build_graph(snapshot, on)
        self._graph_cache = (snapshot, on, graph)
        return graph

    def _build_graph(self, snapshot: Snapshot, on: date | None) -> Graph:
        direct: dict[CurrencyPair, _Edge] = {}
        for provider_id, series_by_pair in snapshot.items():
            if provider_id not in self.registry:
                continue
            registration = self.registry.registration(provider_id)
            for pair, series in series_by_pair.items():
                if not registration.supports(pair):
                    continue
                record = series.latest() if on is None else series.on_or_before(on)
                if record is None:
                    continue
                self._keep_best(direct, pair, _Edge(ChainLeg(record), registration.priority))

        edges = dict(direct)
        if self.allow_inverse:
            for pair, edge in direct.items():
                reverse = pair.reversed()
                if reverse in direct:
                    continue
                self._keep_best(edges, reverse, _Edge(ChainLeg(edge.leg.record, inverted=True), edge.priority))

        graph: Graph = {}
        for pair, edge in edges.items():
            graph.setdefault(pair.base, {})[pair.target] = edge
        return graph

    @staticmethod
    def _keep_best(edges: dict[CurrencyPair, _Edge], pair: CurrencyPair, edge: _Edge) -> None:
        current = edges.get(pair)
        if current is None or edge.rank > current.rank:
            edges[pair] = edge
