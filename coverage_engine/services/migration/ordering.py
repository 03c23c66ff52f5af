"""Parent-before-child ordering of a product's coverages."""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from coverage_engine.schemas.coverage import Coverage


@dataclass
class CoverageOrder:
    """Result of ordering a flat coverage list by ``parentCoverageId``.

    ``order`` lists every coverage that can be migrated, parents first.
    ``orphans`` name a parent that does not exist and are ordered as roots.
    ``cyclic`` coverages sit on (or below) a parent cycle and cannot be
    ordered at all.
    """
    order: List[str] = field(default_factory=list)
    orphans: List[str] = field(default_factory=list)
    cyclic: List[str] = field(default_factory=list)


def order_coverages(coverages: Sequence[Coverage]) -> CoverageOrder:
    """Topologically order coverages, keeping listing order among siblings."""
    ids = [coverage.id for coverage in coverages]
    known = set(ids)
    children: Dict[str, List[str]] = {coverage_id: [] for coverage_id in ids}
    result = CoverageOrder()

    roots: List[str] = []
    for coverage in coverages:
        parent_id = coverage.parent_coverage_id
        if not parent_id:
            roots.append(coverage.id)
        elif parent_id not in known:
            result.orphans.append(coverage.id)
            roots.append(coverage.id)
        else:
            children[parent_id].append(coverage.id)

    queue = deque(roots)
    while queue:
        coverage_id = queue.popleft()
        result.order.append(coverage_id)
        queue.extend(children[coverage_id])

    placed = set(result.order)
    result.cyclic = [coverage_id for coverage_id in ids if coverage_id not in placed]
    return result
