"""
Actor identity resolution.

Resolves an actor id into its relation to a workflow entity (raiser,
assignee, issuer).  Authentication is owned elsewhere; an empty or missing
actor id resolves to ``None`` (anonymous).
"""

from __future__ import annotations

from dataclasses import dataclass, field

RAISER = "raiser"
ASSIGNEE = "assignee"
ISSUER = "issuer"


@dataclass(frozen=True)
class ActorContext:
    id: str
    relations: frozenset = field(default_factory=frozenset)

    def has(self, relation: str) -> bool:
        return relation in self.relations


class EntityRelationIdentityProvider:
    """Derives relations from the owner fields stored on the entity."""

    def resolve_actor(self, actor_id, entity) -> ActorContext | None:
        actor_id = (actor_id or "").strip() if isinstance(actor_id, str) else actor_id
        if not actor_id:
            return None
        actor_id = str(actor_id)

        relations = set()
        if entity.raised_by and entity.raised_by == actor_id:
            relations.add(RAISER)
        if entity.assigned_to and entity.assigned_to == actor_id:
            relations.add(ASSIGNEE)
        if entity.issued_by and entity.issued_by == actor_id:
            relations.add(ISSUER)
        return ActorContext(id=actor_id, relations=frozenset(relations))
