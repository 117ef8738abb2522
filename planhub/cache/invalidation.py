"""
Cache-invalidation cascade.

The CASCADE table lists, per entity type, the cache key templates that go
stale when an entity of that type is written. Templates are formatted with
the entity's fields; a template whose field is missing is skipped.

    self        keys of the entity itself
    scope       parent lists and rollups that include the entity
    on_delete   extra keys dropped when the entity itself is deleted
    descendant  keys dropped when the entity goes away with a deleted ancestor

Adding a cached view means adding its template here.
"""

import logging
from dataclasses import dataclass
from string import Formatter
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..monitoring.metrics import cache_invalidations_total
from .redis_client import CacheClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeRule:
    self_keys: Tuple[str, ...] = ()
    scope_keys: Tuple[str, ...] = ()
    on_delete: Tuple[str, ...] = ()
    descendant: Tuple[str, ...] = ()


CASCADE: Dict[str, CascadeRule] = {
    "activity": CascadeRule(
        self_keys=("activity:{id}",),
        scope_keys=(
            "section-activities:{section_id}",
            "section-stats:{section_id}",
            "planner-stats:{planner_id}",
        ),
        descendant=("activity:{id}",),
    ),
    "section": CascadeRule(
        self_keys=("section:{id}", "section-stats:{id}"),
        scope_keys=(
            "planner-sections:{planner_id}",
            "planner-stats:{planner_id}",
            "planner:{planner_id}",
        ),
        on_delete=("section-activities:{id}",),
        descendant=("section:{id}", "section-stats:{id}", "section-activities:{id}"),
    ),
    "planner": CascadeRule(
        self_keys=("planner:{id}", "planner-stats:{id}", "planner-sections:{id}"),
        scope_keys=("user-planners:{owner_id}",),
    ),
    "collaborator": CascadeRule(
        scope_keys=("planner:{planner_id}", "shared-planners:{user_id}"),
        descendant=("shared-planners:{user_id}",),
    ),
    # Time entries are never cached
    "time_entry": CascadeRule(),
}

_formatter = Formatter()


def _as_dict(doc: Any) -> Dict[str, Any]:
    if isinstance(doc, Mapping):
        return dict(doc)
    if hasattr(doc, "model_dump"):
        return doc.model_dump()
    return dict(vars(doc))


def render(template: str, doc: Mapping[str, Any]) -> Optional[str]:
    """Format a key template, or None if a referenced field is empty."""
    values = {}
    for _, field_name, _, _ in _formatter.parse(template):
        if field_name is None:
            continue
        value = doc.get(field_name)
        if value is None or value == "":
            return None
        values[field_name] = value
    return template.format(**values)


def _render_all(templates: Sequence[str], doc: Mapping[str, Any]) -> List[str]:
    keys = []
    for template in templates:
        key = render(template, doc)
        if key is not None:
            keys.append(key)
    return keys


def cascade_keys(
    entity: str,
    doc: Any,
    deleted: bool = False,
    children: Optional[Mapping[str, Iterable[Any]]] = None,
) -> List[str]:
    """
    Closure of keys made stale by one mutation of one entity.

    Args:
        entity: Entity type (key of CASCADE)
        doc: The entity as stored before deletion, or after the write
        deleted: Whether the entity was deleted
        children: Descendants deleted with it, by entity type
    """
    rule = CASCADE[entity]
    data = _as_dict(doc)

    keys = _render_all(rule.self_keys, data) + _render_all(rule.scope_keys, data)
    if deleted:
        keys += _render_all(rule.on_delete, data)
        for child_entity, child_docs in (children or {}).items():
            child_rule = CASCADE[child_entity]
            for child in child_docs:
                keys += _render_all(child_rule.descendant, _as_dict(child))

    return list(dict.fromkeys(keys))


class CacheInvalidator:
    """Applies the cascade against a cache client. Never raises."""

    def __init__(self, cache: CacheClient):
        self.cache = cache

    async def _drop(self, keys: List[str], label: str) -> List[str]:
        if not keys or not self.cache.enabled:
            return keys
        for key in keys:
            logger.debug(f"Invalidating {key}")
        ok = await self.cache.delete_many(keys)
        if ok:
            logger.info(f"Invalidated {len(keys)} cache keys for {label}")
        else:
            logger.warning(f"Cache invalidation for {label} did not complete; entries expire by TTL")
        return keys

    async def invalidate(
        self,
        entity: str,
        doc: Any,
        deleted: bool = False,
        children: Optional[Mapping[str, Iterable[Any]]] = None,
    ) -> List[str]:
        """Invalidate the cascade for one mutation. Returns the keys targeted."""
        try:
            keys = cascade_keys(entity, doc, deleted=deleted, children=children)
            cache_invalidations_total.labels(entity=entity, kind="self").inc()
            if deleted and children:
                cache_invalidations_total.labels(entity=entity, kind="children").inc()
        except Exception as e:
            logger.error(f"Failed to compute invalidation cascade for {entity}: {e}")
            return []

        label = f"{entity} {'delete' if deleted else 'write'}"
        return await self._drop(keys, label)

    async def invalidate_scopes(
        self,
        entity: str,
        docs: Iterable[Any],
        deleted: bool = False,
        children: Optional[Mapping[str, Iterable[Any]]] = None,
    ) -> Dict[Tuple[str, ...], List[str]]:
        """
        Invalidate a batch of same-type entities with one scope
        invalidation per distinct parent.

        Returns:
            Mapping of each distinct parent scope (its rendered scope keys)
            to the ids of the touched entities under it
        """
        rule = CASCADE[entity]
        scopes: Dict[Tuple[str, ...], List[str]] = {}
        keys: List[str] = []

        try:
            for doc in docs:
                data = _as_dict(doc)
                keys += _render_all(rule.self_keys, data)
                if deleted:
                    keys += _render_all(rule.on_delete, data)
                scope = tuple(_render_all(rule.scope_keys, data))
                scopes.setdefault(scope, []).append(data.get("id"))

            if deleted:
                for child_entity, child_docs in (children or {}).items():
                    child_rule = CASCADE[child_entity]
                    for child in child_docs:
                        keys += _render_all(child_rule.descendant, _as_dict(child))

            for scope in scopes:
                keys += list(scope)
                cache_invalidations_total.labels(entity=entity, kind="scope").inc()
        except Exception as e:
            logger.error(f"Failed to compute batch invalidation for {entity}: {e}")
            return {}

        await self._drop(list(dict.fromkeys(keys)), f"{entity} batch over {len(scopes)} scopes")
        return scopes
