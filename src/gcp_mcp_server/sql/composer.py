"""Compose dependent query fragments into a single statement."""

import re
from typing import Any, Dict, List, Sequence

from ..errors import ToolValidationError

PERFORMANCE_HINTS = {
    'cte': [
        'CTEs referenced more than once may be evaluated more than once; materialize hot ones as tables',
        'Consider creating materialized views for frequently used CTEs',
    ],
    'subquery': [
        'Deeply nested subqueries are harder to read and tune; prefer CTEs',
        'Filter inside the innermost subquery to reduce scanned data',
    ],
    'join': [
        'Cluster tables on the join keys',
        'Put the largest table first in the join order',
    ],
    'union': [
        'UNION ALL avoids the deduplication cost of UNION DISTINCT',
        'Ensure consistent column types across all components',
    ],
    'materialized': [
        'Materialized views improve query performance but require storage',
        'Choose a refresh frequency that matches data update patterns',
    ],
}


def component_name(component: Dict[str, Any]) -> str:
    return component.get('alias') or component['id']


def validate_dependencies(components: Sequence[Dict[str, Any]]) -> None:
    ids = {c['id'] for c in components}
    if len(ids) != len(components):
        raise ToolValidationError('Component ids must be unique')
    for component in components:
        for dep in component.get('dependencies') or ():
            if dep not in ids:
                raise ToolValidationError(f"Component '{component['id']}' depends on unknown component '{dep}'")


def topological_sort(components: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Order components so every dependency precedes its dependents.

    Input order is kept where dependencies allow; cycles are rejected.
    """
    by_id = {c['id']: c for c in components}
    done = set()
    in_progress = set()
    ordered: List[Dict[str, Any]] = []

    def visit(component):
        cid = component['id']
        if cid in done:
            return
        if cid in in_progress:
            raise ToolValidationError(f"Circular dependency involving component '{cid}'")
        in_progress.add(cid)
        for dep in component.get('dependencies') or ():
            if dep in by_id:
                visit(by_id[dep])
        in_progress.discard(cid)
        done.add(cid)
        ordered.append(component)

    for component in components:
        visit(component)
    return ordered


def compose_cte(components: Sequence[Dict[str, Any]], optimization_level: str = 'basic') -> str:
    ctes = ',\n'.join(f"{component_name(c)} AS (\n{c['query'].strip()}\n)" for c in components)
    query = f'WITH {ctes}\nSELECT * FROM {component_name(components[-1])}'
    if optimization_level == 'advanced':
        query = '-- Materialize CTEs referenced more than once as temp tables\n' + query
    return query


def compose_subquery(components: Sequence[Dict[str, Any]]) -> str:
    """Inline each dependency into the final query where its name appears."""
    query = components[-1]['query'].strip()
    for component in reversed(components[:-1]):
        pattern = re.compile(rf'\b{re.escape(component_name(component))}\b')
        query = pattern.sub(lambda _m, c=component: f"({c['query'].strip()})", query)
    return query


def compose_join(components: Sequence[Dict[str, Any]]) -> str:
    base = components[0]
    query = f"SELECT * FROM ({base['query'].strip()}) AS {component_name(base)}"
    for component in components[1:]:
        key = component.get('joinKey') or 'id'
        query += f"\nJOIN ({component['query'].strip()}) AS {component_name(component)} USING ({key})"
    return query


def compose_union(components: Sequence[Dict[str, Any]]) -> str:
    return '\nUNION ALL\n'.join(c['query'].strip() for c in components)


def compose_materialized(components: Sequence[Dict[str, Any]], dataset: str) -> str:
    views = [
        f"CREATE OR REPLACE VIEW `{dataset}.{c['id']}_view` AS\n{c['query'].strip()};"
        for c in components
    ]
    views.append(
        '-- Final aggregated view\n'
        f"CREATE OR REPLACE VIEW `{dataset}.final_view` AS\n"
        f"SELECT * FROM `{dataset}.{components[-1]['id']}_view`;"
    )
    return '\n\n'.join(views)


def compose(
    components: Sequence[Dict[str, Any]],
    strategy: str,
    optimization_level: str = 'basic',
    dataset: str = '{dataset}',
) -> str:
    if not components:
        raise ToolValidationError('At least one component is required')
    validate_dependencies(components)
    ordered = topological_sort(components)

    if strategy == 'cte':
        return compose_cte(ordered, optimization_level)
    if strategy == 'subquery':
        return compose_subquery(ordered)
    if strategy == 'join':
        return compose_join(ordered)
    if strategy == 'union':
        return compose_union(ordered)
    if strategy == 'materialized':
        return compose_materialized(ordered, dataset)
    raise ToolValidationError(f'Unknown composition strategy: {strategy}')
