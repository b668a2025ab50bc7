"""
Knowledge Graph Store - in-process entity/relation graph.

Implements the knowledge store client interface: entities with
observation lists, typed relations, substring search over names, types and
observations. Optionally persisted to a JSON-lines file, one entity or
relation per line, rewritten on every mutation.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..models import KnowledgeEntity, KnowledgeGraph, KnowledgeRelation

logger = logging.getLogger(__name__)


class KnowledgeGraphStore:
    """
    Entities keyed by name; relations as a de-duplicated list.

    Creating an entity whose name already exists is a no-op, matching the
    behaviour of common knowledge-graph memory servers; callers that want to
    replace an entity delete it first.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self._entities: Dict[str, KnowledgeEntity] = {}
        self._relations: List[KnowledgeRelation] = []
        if self.path is not None and self.path.exists():
            self._load()

    async def create_entities(self, entities: List[KnowledgeEntity]) -> None:
        for entity in entities:
            if entity.name in self._entities:
                continue
            self._entities[entity.name] = entity.model_copy(deep=True)
        self._save()

    async def delete_entities(self, names: List[str]) -> None:
        doomed = set(names)
        for name in doomed:
            self._entities.pop(name, None)
        self._relations = [
            r for r in self._relations if r.source not in doomed and r.target not in doomed
        ]
        self._save()

    async def create_relations(self, relations: List[KnowledgeRelation]) -> None:
        for relation in relations:
            if relation not in self._relations:
                self._relations.append(relation)
        self._save()

    async def search_nodes(self, query: str) -> List[KnowledgeEntity]:
        """Case-insensitive substring match on name, type or any observation."""
        needle = query.lower()
        return [
            e.model_copy(deep=True)
            for e in self._entities.values()
            if needle in e.name.lower()
            or needle in e.entity_type.lower()
            or any(needle in o.lower() for o in e.observations)
        ]

    async def read_graph(self) -> KnowledgeGraph:
        return KnowledgeGraph(
            entities=[e.model_copy(deep=True) for e in self._entities.values()],
            relations=list(self._relations),
        )

    def __len__(self) -> int:
        return len(self._entities)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lines = [
            json.dumps({"type": "entity", **e.model_dump()}) for e in self._entities.values()
        ]
        lines.extend(
            json.dumps({"type": "relation", **r.model_dump(by_alias=True)}) for r in self._relations
        )
        self.path.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")

    def _load(self) -> None:
        for number, line in enumerate(self.path.read_text(encoding="utf-8").splitlines(), 1):
            if not line.strip():
                continue
            try:
                item = json.loads(line)
                kind = item.pop("type")
                if kind == "entity":
                    entity = KnowledgeEntity.model_validate(item)
                    self._entities[entity.name] = entity
                elif kind == "relation":
                    self._relations.append(KnowledgeRelation.model_validate(item))
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable line {number} in {self.path}: {e}")
        logger.info(
            f"Loaded {len(self._entities)} entities and {len(self._relations)} relations from {self.path}"
        )
