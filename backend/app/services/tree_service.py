"""
Tree Service
============

Read-side access to the tree node registry: paginated lists with search,
single-tree detail, and the "latest reading" blurb both of those show.
"""

import logging
from typing import Optional

from sqlalchemy import func, or_, select

from app.models import LatestReadingSummary, TreeDetail, TreeListResponse, TreeSummary
from app.models.tables import RawReading, TreeNode
from app.services.database import Database

logger = logging.getLogger(__name__)


class TreeService:

    DEFAULT_LIMIT = 100

    def __init__(self, database: Database):
        self.database = database

    def list_trees(
        self,
        active: Optional[bool] = True,
        search: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        with_latest: bool = False,
    ) -> TreeListResponse:
        """
        One page of trees ordered by name.

        Args:
            active: Only trees with this active flag (None = no filter)
            search: Case-insensitive substring match on name, location,
                    node id or species
            limit: Page size
            offset: Rows to skip
            with_latest: Attach each tree's latest raw reading
        """
        query = select(TreeNode)

        if active is not None:
            query = query.where(TreeNode.active == active)

        if search and search.strip():
            term = f"%{search.strip()}%"
            query = query.where(or_(
                TreeNode.name.ilike(term),
                TreeNode.location.ilike(term),
                TreeNode.node_id.ilike(term),
                TreeNode.species.ilike(term),
            ))

        with self.database.session() as session:
            total = session.scalar(select(func.count()).select_from(query.subquery())) or 0

            trees = session.scalars(
                query.order_by(TreeNode.name.asc(), TreeNode.node_id.asc())
                .offset(offset)
                .limit(limit)
            ).all()

            items = []
            for tree in trees:
                summary = _tree_summary(tree)
                if with_latest:
                    summary.latest_reading = self._latest_summary(session, tree.id)
                items.append(summary)

        return TreeListResponse(items=items, total=total)

    def get_tree(self, tree_id: str) -> Optional[TreeDetail]:
        """Full tree record with its latest reading, or None."""
        with self.database.session() as session:
            tree = session.get(TreeNode, tree_id)
            if tree is None:
                return None

            return TreeDetail(
                **_tree_summary(tree).model_dump(exclude={"latest_reading"}),
                board_id=tree.board_id,
                sensor_depths=tree.sensor_depths,
                site_pi=tree.site_pi,
                created_at=tree.created_at,
                updated_at=tree.updated_at,
                latest_reading=self._latest_summary(session, tree.id),
            )

    def _latest_summary(self, session, tree_id: str) -> Optional[LatestReadingSummary]:
        row = session.scalars(
            select(RawReading)
            .where(RawReading.tree_node_id == tree_id)
            .order_by(RawReading.timestamp.desc())
            .limit(1)
        ).first()

        if row is None:
            return None

        return LatestReadingSummary(
            timestamp=row.timestamp,
            temperature=row.temperature,
            humidity=row.humidity,
            dendrometer=row.dendrometer,
            sapflow1=row.sapflow1,
            data_source=row.data_source,
        )


def _tree_summary(tree: TreeNode) -> TreeSummary:
    return TreeSummary(
        id=tree.id,
        node_id=tree.node_id,
        name=tree.name,
        location=tree.location,
        lat=tree.lat,
        lon=tree.lon,
        species=tree.species,
        dbh=tree.dbh,
        active=tree.active,
    )
