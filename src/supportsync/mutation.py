"""Mutation Runner - change server state, then invalidate.

On success the runner seeds (or removes) the entity's detail entry and then
walks the operation's invalidation rule. On failure the cache is left
untouched and the error propagates: consistency is only disturbed after a
confirmed success.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from supportsync.errors import UnknownMutationError
from supportsync.invalidation import INVALIDATION_RULES, Action, InvalidationRule, Seed
from supportsync.keys import CacheKey
from supportsync.logging import get_logger
from supportsync.query import QueryRunner
from supportsync.retry import MUTATION_RETRY, RetryPolicy, call_with_retry
from supportsync.store import CacheStore

T = TypeVar("T")

logger = get_logger(__name__)


def _entity_id(result: Any, params: Mapping[str, Any]) -> Any:
    """Id of the mutated entity: from the params, else from the response."""
    entity_id = params.get("id")
    if entity_id is None:
        entity_id = getattr(result, "id", None)
    if entity_id is None and isinstance(result, Mapping):
        entity_id = result.get("id")
    return entity_id


class MutationRunner:
    """Executes mutations and applies their invalidation rules."""

    def __init__(
        self,
        store: CacheStore,
        *,
        queries: QueryRunner | None = None,
        rules: Mapping[str, InvalidationRule] | None = None,
        retry: RetryPolicy = MUTATION_RETRY,
    ) -> None:
        self._store = store
        self._queries = queries
        self._rules = dict(INVALIDATION_RULES if rules is None else rules)
        self._retry = retry

    def rule(self, operation: str) -> InvalidationRule:
        try:
            return self._rules[operation]
        except KeyError:
            raise UnknownMutationError(operation) from None

    async def mutate(
        self,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        params: Mapping[str, Any] | None = None,
        *,
        refetch: bool = False,
    ) -> T:
        """Run ``fn`` and, on success, apply ``operation``'s rule.

        Args:
            operation: Mutation name, e.g. ``"tickets.assign"``
            fn: Async transport call performing the change
            params: Mutation parameters; ``id`` identifies the target entity
            refetch: Also refetch invalidated keys that have subscribers

        Returns:
            Whatever ``fn`` returned
        """
        rule = self.rule(operation)
        params = dict(params or {})

        result = await call_with_retry(fn, self._retry)

        touched = self.apply(operation, result, params, rule=rule)
        if refetch and self._queries is not None:
            for key in touched:
                self._queries.refetch(key)
        return result

    def apply(
        self,
        operation: str,
        result: Any,
        params: Mapping[str, Any],
        *,
        rule: InvalidationRule | None = None,
    ) -> list[CacheKey]:
        """Seed, then invalidate. Returns the keys marked stale or removed."""
        rule = rule or self.rule(operation)
        touched: list[CacheKey] = []
        entity_id = _entity_id(result, params)

        if rule.seed is Seed.PUT and entity_id is not None:
            self._store.put(rule.keys.detail(entity_id), result)
        elif rule.seed is Seed.REMOVE and entity_id is not None:
            selector = rule.keys.pattern("detail", id=entity_id)
            touched += self._store.remove(selector)
            if self._queries is not None:
                self._queries.forget(selector)

        for target in rule.targets:
            selector = target.selector({**params, "id": entity_id})
            if target.action is Action.REMOVE:
                touched += self._store.remove(selector)
            else:
                touched += self._store.mark_stale(selector)

        logger.info(
            "mutation_applied",
            operation=operation,
            entity_id=entity_id,
            invalidated=len(touched),
        )
        return touched


__all__ = ["MutationRunner"]
