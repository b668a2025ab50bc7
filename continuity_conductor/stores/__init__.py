"""
Reference collaborator implementations.

The conductor only depends on the client interfaces in ``collaborators``;
these stores satisfy two of them for local use and tests.
"""

from .knowledge_graph import KnowledgeGraphStore
from .relational import SqlRelationalStore

__all__ = ["KnowledgeGraphStore", "SqlRelationalStore"]
