"""
Foreign-key relationship mapping with multi-hop discovery.

Parents are tables this table references; children are tables that
reference it. Hops beyond the first carry the table they were reached
through in `via_table`. Tables outside the whitelist are neither reported
nor explored.
"""

import logging
from typing import Any, Optional

from security.whitelist import Whitelist
from utils.errors import DatabaseAdminError, ErrorCode

logger = logging.getLogger(__name__)

MIN_DEPTH = 1
MAX_DEPTH = 3

PARENTS_SQL = """
    SELECT
        tc.constraint_name,
        kcu.column_name,
        ccu.table_name AS foreign_table_name,
        ccu.column_name AS foreign_column_name
    FROM information_schema.table_constraints AS tc
    JOIN information_schema.key_column_usage AS kcu
        ON tc.constraint_name = kcu.constraint_name
        AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage AS ccu
        ON ccu.constraint_name = tc.constraint_name
        AND ccu.table_schema = tc.table_schema
    WHERE tc.constraint_type = 'FOREIGN KEY'
        AND tc.table_name = $1
        AND tc.table_schema = 'public'
    ORDER BY kcu.column_name
"""

CHILDREN_SQL = """
    SELECT
        tc.table_name AS child_table,
        tc.constraint_name,
        kcu.column_name AS child_column,
        ccu.column_name AS parent_column
    FROM information_schema.table_constraints AS tc
    JOIN information_schema.key_column_usage AS kcu
        ON tc.constraint_name = kcu.constraint_name
        AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage AS ccu
        ON ccu.constraint_name = tc.constraint_name
        AND ccu.table_schema = tc.table_schema
    WHERE tc.constraint_type = 'FOREIGN KEY'
        AND ccu.table_name = $1
        AND tc.table_schema = 'public'
    ORDER BY tc.table_name, kcu.column_name
"""


def validate_depth(depth: Any) -> int:
    if isinstance(depth, bool) or not isinstance(depth, int) or not MIN_DEPTH <= depth <= MAX_DEPTH:
        raise DatabaseAdminError(
            ErrorCode.INVALID_ARGUMENT,
            f"Depth must be between {MIN_DEPTH} and {MAX_DEPTH}",
            {"depth": depth},
        )
    return depth


class RelationshipMapper:
    def __init__(self, db, whitelist: Optional[Whitelist] = None):
        self.db = db
        self.whitelist = whitelist

    def _visible(self, table: str) -> bool:
        return self.whitelist is None or table in self.whitelist

    async def direct_relationships(self, table: str) -> tuple[list[dict], list[dict]]:
        parents = [
            {
                "constraint_name": row["constraint_name"],
                "column": row["column_name"],
                "references_table": row["foreign_table_name"],
                "references_column": row["foreign_column_name"],
                "type": "foreign_key",
            }
            for row in await self.db.fetch(PARENTS_SQL, table)
            if self._visible(row["foreign_table_name"])
        ]
        children = [
            {
                "constraint_name": row["constraint_name"],
                "table": row["child_table"],
                "column": row["child_column"],
                "references_column": row["parent_column"],
                "type": "foreign_key",
            }
            for row in await self.db.fetch(CHILDREN_SQL, table)
            if self._visible(row["child_table"])
        ]
        return parents, children

    async def get_relationships(self, table: str, depth: int = 1) -> dict[str, Any]:
        depth = validate_depth(depth)
        parents, children = await self.direct_relationships(table)
        for rel in parents + children:
            rel["depth"] = 1

        visited = {table}
        frontier = [r["references_table"] for r in parents] + [r["table"] for r in children]
        for level in range(2, depth + 1):
            to_explore = []
            for name in frontier:
                if name not in visited and name not in to_explore:
                    to_explore.append(name)
            if not to_explore:
                break
            frontier = []
            for via in to_explore:
                visited.add(via)
                nested_parents, nested_children = await self.direct_relationships(via)
                for rel in nested_parents:
                    rel.update(depth=level, via_table=via)
                    parents.append(rel)
                    frontier.append(rel["references_table"])
                for rel in nested_children:
                    rel.update(depth=level, via_table=via)
                    children.append(rel)
                    frontier.append(rel["table"])

        return {"table": table, "depth": depth, "parents": parents, "children": children}

    async def get_relationship_graph(self, table: str, depth: int = 1) -> dict[str, Any]:
        """Nodes/edges view of get_relationships, for visualization."""
        rels = await self.get_relationships(table, depth)
        nodes = [table]
        edges = []
        for parent in rels["parents"]:
            source = parent.get("via_table", table)
            if parent["references_table"] not in nodes:
                nodes.append(parent["references_table"])
            edges.append({"from": source, "to": parent["references_table"], "column": parent["column"],
                          "type": "references", "depth": parent["depth"]})
        for child in rels["children"]:
            target = child.get("via_table", table)
            if child["table"] not in nodes:
                nodes.append(child["table"])
            edges.append({"from": child["table"], "to": target, "column": child["column"],
                          "type": "referenced_by", "depth": child["depth"]})
        return {"center": table, "nodes": nodes, "edges": edges}

