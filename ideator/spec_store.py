# ideator/spec_store.py
import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from ideator.entities import AgentIdea
from ideator.schemas import ParentRefs, SpecificationArtifact

logger = logging.getLogger("ideator_backend")

_COLUMN_FIELDS = (
    "title",
    "summary",
    "summary_message",
    "steps",
    "agent_stack",
    "client_requirements",
    "build_phases",
    "security_considerations",
    "future_enhancements",
    "implementation_estimate",
)

# fields whose emptiness makes a stored idea "thin"
_SUBSTANCE_FIELDS = ("summary", "steps", "agent_stack", "client_requirements", "build_phases")

ENRICH_PREFIX_CHARS = 24


class SpecStore:
    """
    Persists finalized SpecificationArtifacts (agent_ideas table).
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.SessionFactory = session_factory

    # -----------------------
    # Write
    # -----------------------

    def save(self, artifact: SpecificationArtifact, owner_id: str | None = None, parent_refs: ParentRefs | None = None) -> str:
        parent_refs = parent_refs or ParentRefs()
        data = artifact.model_dump(mode="json")
        extra = {k: v for k, v in data.items() if k not in _COLUMN_FIELDS}

        idea = AgentIdea(
            **{name: data.get(name) for name in _COLUMN_FIELDS},
            extra=extra,
            owner_id=owner_id,
            project_id=parent_refs.project_id,
            node_id=parent_refs.node_id,
            status="proposal" if parent_refs.project_id else "idea",
        )

        session = self.SessionFactory()
        try:
            session.add(idea)
            session.commit()
            idea_id = idea.id
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info(f"Saved agent idea {idea_id} ({artifact.title!r})")
        return idea_id

    # -----------------------
    # Read
    # -----------------------

    def _row_to_dict(self, row: AgentIdea) -> dict[str, Any]:
        out: dict[str, Any] = dict(row.extra or {})
        for name in _COLUMN_FIELDS:
            out[name] = getattr(row, name)
        out["id"] = row.id
        out["owner_id"] = row.owner_id
        out["project_id"] = row.project_id
        out["node_id"] = row.node_id
        out["status"] = row.status
        return out

    def load(self, idea_id: str) -> dict[str, Any] | None:
        session = self.SessionFactory()
        try:
            row = session.query(AgentIdea).filter(AgentIdea.id == str(idea_id)).one_or_none()
            return self._row_to_dict(row) if row is not None else None
        finally:
            session.close()

    # -----------------------
    # Optional post-read enrichment
    # -----------------------

    def is_thin(self, idea: dict[str, Any]) -> bool:
        return all(not idea.get(name) for name in _SUBSTANCE_FIELDS)

    def enrich_thin(self, idea: dict[str, Any]) -> dict[str, Any]:
        """
        A thin record (title only) borrows the content of the richest other idea
        with the same title, or failing that one sharing the first 24 title characters.
        Heuristic repair for legacy rows; the record itself is never written back.
        """
        if not idea or not self.is_thin(idea):
            return idea
        title = (idea.get("title") or "").strip()
        if not title:
            return idea

        session = self.SessionFactory()
        try:
            base = session.query(AgentIdea).filter(AgentIdea.id != idea.get("id"))
            candidates = base.filter(AgentIdea.title == title).order_by(AgentIdea.created_at.desc()).all()
            if not candidates:
                prefix = title[:ENRICH_PREFIX_CHARS].replace("%", r"\%").replace("_", r"\_")
                candidates = (
                    base.filter(AgentIdea.title.ilike(f"{prefix}%", escape="\\"))
                    .order_by(AgentIdea.created_at.desc())
                    .all()
                )
            rich = [self._row_to_dict(r) for r in candidates]
            rich = [r for r in rich if not self.is_thin(r)]
        finally:
            session.close()

        if not rich:
            return idea

        source = rich[0]
        enriched = dict(idea)
        for name in (*_COLUMN_FIELDS, "agent_type"):
            if not enriched.get(name) and source.get(name):
                enriched[name] = source[name]
        enriched["enriched_from"] = source["id"]
        logger.info(f"Enriched thin idea {idea.get('id')} from {source['id']}")
        return enriched
