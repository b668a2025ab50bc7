"""
Rule Store - TTL-refreshed view of session rules persisted in the
knowledge store.

Reads check staleness first and reload the full rule set when the view is
older than the TTL. Mutations hit the knowledge store first and the cache
second, so a failed store write never leaves the cache ahead of the store.

The knowledge store has no in-place update. An update is a delete followed
by a create, and the window between the two is a known data-loss risk:

- if the create fails, the rule is journaled in ``_pending_recreate``,
  dropped from the cache (matching the store) and the caller gets
  ``CollaboratorUnavailableError``;
- every later call that touches the store first re-attempts the journaled
  creates (``recover_pending``);
- if the process dies between delete and create, the journal is lost with
  it and so is the rule.

Without a knowledge store the rules live in the cache only.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .cache import TTLCache
from .collaborators import CollaboratorSet, KnowledgeStoreClient
from .config import Settings, settings as default_settings
from .entities import (
    RULE_CATEGORY,
    SESSION_RULE,
    decode_rule,
    encode_rule,
    entity_name,
    is_kind,
)
from .exceptions import CollaboratorUnavailableError, MalformedEntityError, RuleNotFoundError
from .models import KnowledgeRelation, RuleScope, SessionRule, utcnow

logger = logging.getLogger(__name__)

# Fields callers may not change through update_rule
_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


class RuleStore:
    """
    Manages session rules - persisted in the knowledge store, served from a
    TTL cache.
    """

    def __init__(
        self,
        collaborators: CollaboratorSet,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.collaborators = collaborators
        self.settings = settings or default_settings
        self.cache: TTLCache[SessionRule] = TTLCache(
            ttl=self.settings.rule_cache_ttl_seconds, clock=clock
        )
        self._pending_recreate: Dict[str, SessionRule] = {}

    @property
    def _store(self) -> Optional[KnowledgeStoreClient]:
        return self.collaborators.knowledge

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_rules(self, scope: Optional[RuleScope] = None) -> List[SessionRule]:
        """Return rules ascending by priority, optionally filtered by scope."""
        await self._refresh_if_stale()

        rules = self.cache.values()
        if scope is not None:
            rules = [r for r in rules if r.scope == scope]

        return sorted(rules, key=lambda r: (r.priority, r.created_at, r.id))

    async def get_rule(self, rule_id: str) -> SessionRule:
        """
        Return one rule.

        Raises:
            RuleNotFoundError: if the id is unknown
        """
        await self._refresh_if_stale()
        rule = self.cache.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    async def find_rule_by_text(self, text: str) -> Optional[SessionRule]:
        for rule in await self.get_rules():
            if rule.rule == text:
                return rule
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_rule(self, rule: SessionRule) -> SessionRule:
        """
        Persist a new rule, then add it to the cache.

        Raises:
            CollaboratorUnavailableError: if the knowledge store write fails
        """
        await self.recover_pending()

        store = self._store
        if store is not None:
            try:
                await store.create_entities([encode_rule(rule)])
            except Exception as e:
                raise CollaboratorUnavailableError("knowledge", f"create rule {rule.id}: {e}")
            await self._link_category(store, rule)
        else:
            logger.debug(f"No knowledge store, rule {rule.id} kept in cache only")

        self.cache.put(rule.id, rule)
        logger.info(f"Session rule created: {rule.id} - \"{rule.rule[:50]}\"")
        return rule

    async def update_rule(self, rule_id: str, updates: Dict[str, Any]) -> SessionRule:
        """
        Apply field updates to an existing rule.

        Raises:
            RuleNotFoundError: if the id is unknown (cache and store untouched)
            CollaboratorUnavailableError: if the store rejected the rewrite
        """
        existing = await self.get_rule(rule_id)

        data = existing.model_dump()
        data.update({k: v for k, v in updates.items() if k not in _IMMUTABLE_FIELDS})
        data["updated_at"] = utcnow()
        updated = SessionRule.model_validate(data)

        await self.recover_pending()
        await self._rewrite(updated)

        self.cache.put(rule_id, updated)
        logger.debug(f"Session rule updated: {rule_id}")
        return updated

    async def delete_rule(self, rule_id: str) -> None:
        """
        Delete a rule from the store and the cache. No soft delete.

        Raises:
            RuleNotFoundError: if the id is unknown
            CollaboratorUnavailableError: if the store delete fails
        """
        await self.get_rule(rule_id)

        store = self._store
        if store is not None:
            try:
                await store.delete_entities([entity_name(SESSION_RULE, rule_id)])
            except Exception as e:
                raise CollaboratorUnavailableError("knowledge", f"delete rule {rule_id}: {e}")

        self._pending_recreate.pop(rule_id, None)
        self.cache.invalidate(rule_id)
        logger.info(f"Session rule deleted: {rule_id}")

    # ------------------------------------------------------------------
    # Store synchronization
    # ------------------------------------------------------------------

    async def load_from_store(self) -> List[SessionRule]:
        """
        Replace the cache with every rule entity in the knowledge store.

        Malformed entities are skipped with a warning.
        """
        store = self._store
        if store is None:
            self.cache.mark_fresh()
            return self.cache.values()

        await self.recover_pending()

        entities = await store.search_nodes(SESSION_RULE[1])
        rules: List[SessionRule] = []
        for entity in entities:
            if not is_kind(entity, SESSION_RULE):
                continue
            try:
                rules.append(decode_rule(entity))
            except MalformedEntityError as e:
                logger.warning(f"Failed to parse rule from entity {entity.name}: {e.reason}")

        self.cache.replace_all(rules, key=lambda r: r.id)
        logger.info(f"Loaded {len(rules)} rules from knowledge store")
        return rules

    async def sync_to_store(self) -> int:
        """Rewrite every cached rule into the knowledge store."""
        if self._store is None:
            return 0

        await self.recover_pending()
        synced = 0
        for rule in self.cache.values():
            await self._rewrite(rule)
            synced += 1
        logger.info(f"Synced {synced} rules to knowledge store")
        return synced

    async def recover_pending(self) -> int:
        """
        Re-create rules whose delete succeeded but create failed.

        Returns:
            Number of rules recovered
        """
        store = self._store
        if not self._pending_recreate or store is None:
            return 0

        recovered = 0
        for rule_id, rule in list(self._pending_recreate.items()):
            try:
                await store.create_entities([encode_rule(rule)])
            except Exception as e:
                logger.warning(f"Rule {rule_id} still pending re-create: {e}")
                continue
            await self._link_category(store, rule)
            del self._pending_recreate[rule_id]
            self.cache.put(rule_id, rule)
            recovered += 1
            logger.info(f"Recovered rule {rule_id} after interrupted update")
        return recovered

    @property
    def pending_recreate(self) -> List[str]:
        return list(self._pending_recreate)

    @property
    def stats(self) -> Dict[str, Any]:
        return {**self.cache.stats, "pending_recreate": len(self._pending_recreate)}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _refresh_if_stale(self) -> None:
        if not self.cache.is_stale():
            return
        try:
            await self.load_from_store()
        except Exception as e:
            # Keep serving the previous view; the next read tries again
            logger.warning(f"Rule reload failed, serving stale cache: {e}")

    async def _rewrite(self, rule: SessionRule) -> None:
        """Delete-then-create of one rule entity."""
        store = self._store
        if store is None:
            return

        name = entity_name(SESSION_RULE, rule.id)
        try:
            await store.delete_entities([name])
        except Exception as e:
            raise CollaboratorUnavailableError("knowledge", f"delete {name}: {e}")

        try:
            await store.create_entities([encode_rule(rule)])
        except Exception as e:
            self._pending_recreate[rule.id] = rule
            self.cache.invalidate(rule.id)
            logger.error(f"Rule {rule.id} deleted but not re-created, journaled for recovery: {e}")
            raise CollaboratorUnavailableError(
                "knowledge", f"rule {rule.id} deleted but not re-created: {e}"
            )
        # Deleting the entity also dropped its category relation
        await self._link_category(store, rule)

    async def _link_category(self, store: KnowledgeStoreClient, rule: SessionRule) -> None:
        relation = KnowledgeRelation(
            source=entity_name(SESSION_RULE, rule.id),
            target=entity_name(RULE_CATEGORY, rule.type.value),
            relation_type="belongs_to",
        )
        try:
            await store.create_relations([relation])
        except Exception as e:
            logger.warning(f"Could not link rule {rule.id} to its category: {e}")
