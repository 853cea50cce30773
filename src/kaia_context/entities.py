"""
Domain entities that know how to describe their own context.

Each model implements the capability protocols that make sense for it;
the builder defaults whatever an entity leaves out. EntityRegistry turns a
ChangeEvent payload back into the right model so bus-triggered rebuilds see
the same capabilities as direct calls.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, Field

from .kernel.schema import (
    BehaviorPatterns,
    ChangeEvent,
    Cluster,
    Dependencies,
    EntityKind,
    IntentionalContext,
    Location,
    Mobility,
    PriorityContext,
    PriorityFactors,
    Proximity,
    Recurrence,
    RelationalContext,
    Relationships,
    SpatialContext,
    TemporalContext,
    UserIntent,
    utcnow,
)

PRIORITY_LEVELS: Dict[str, int] = {
    "low": 25,
    "medium": 50,
    "high": 75,
    "urgent": 90,
}


class GenericEntity(BaseModel):
    """Any entity without context capabilities; every dimension defaults."""

    id: str
    owner_id: str
    kind: str = "GENERIC"
    data: Dict[str, Any] = Field(default_factory=dict)


class Task(BaseModel):
    id: str
    owner_id: str
    kind: EntityKind = EntityKind.TASK
    title: str
    description: str = ""
    status: Literal["pending", "in_progress", "completed", "postponed"] = "pending"
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    importance: int = Field(default=0, ge=0, le=100)
    due_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    estimated_minutes: Optional[int] = None
    parent_id: Optional[str] = None
    subtask_ids: List[str] = Field(default_factory=list)
    blocks: List[str] = Field(default_factory=list)
    blocked_by: List[str] = Field(default_factory=list)
    goal_id: Optional[str] = None
    goal: str = ""

    def extract_temporal_context(self) -> TemporalContext:
        return TemporalContext(timestamp=self.due_at or self.created_at)

    def extract_priority_context(self) -> PriorityContext:
        base = PRIORITY_LEVELS[self.priority]
        return PriorityContext(
            base_priority=base,
            computed_priority=base,
            factors=PriorityFactors(
                importance=self.importance,
                deadline=self.due_at,
                dependency_ids=list(self.blocks),
                blocking_others=bool(self.blocks),
            ),
        )

    def extract_relational_context(self) -> RelationalContext:
        clusters = []
        if self.goal_id:
            clusters.append(Cluster(cluster_id=self.goal_id, cluster_type="goal"))
        return RelationalContext(
            relationships=Relationships(
                parent_id=self.parent_id,
                children_ids=list(self.subtask_ids),
            ),
            clusters=clusters,
            dependencies=Dependencies(
                blocked_by_ids=list(self.blocked_by),
                blocks_ids=list(self.blocks),
            ),
        )

    def extract_intentional_context(self) -> IntentionalContext:
        action = {"completed": "complete", "postponed": "postpone"}.get(self.status, "create")
        return IntentionalContext(
            user_intent=UserIntent(primary_goal=self.goal, action_type=action),
            behavior_patterns=BehaviorPatterns(
                typical_completion_minutes=self.estimated_minutes,
            ),
        )


class CalendarEvent(BaseModel):
    """Calendar events and appointments."""

    id: str
    owner_id: str
    kind: EntityKind = EntityKind.EVENT
    title: str
    start_at: datetime
    end_at: Optional[datetime] = None
    location: Optional[Location] = None
    travel_minutes: Optional[int] = None
    recurrence: Optional[Recurrence] = None
    participant_ids: List[str] = Field(default_factory=list)

    def extract_temporal_context(self) -> TemporalContext:
        return TemporalContext(timestamp=self.start_at, recurrence=self.recurrence)

    def extract_spatial_context(self) -> SpatialContext:
        mobility = None
        if self.location is not None:
            mobility = Mobility(
                requires_travel=True,
                estimated_travel_minutes=self.travel_minutes,
            )
        return SpatialContext(location=self.location, proximity=Proximity(), mobility=mobility)

    def extract_relational_context(self) -> RelationalContext:
        return RelationalContext(
            relationships=Relationships(related_entity_ids=list(self.participant_ids)),
        )


class Reminder(BaseModel):
    id: str
    owner_id: str
    kind: EntityKind = EntityKind.REMINDER
    message: str = ""
    remind_at: datetime
    linked_entity_id: Optional[str] = None

    def extract_temporal_context(self) -> TemporalContext:
        return TemporalContext(timestamp=self.remind_at)

    def extract_priority_context(self) -> PriorityContext:
        return PriorityContext(
            factors=PriorityFactors(deadline=self.remind_at),
        )

    def extract_relational_context(self) -> RelationalContext:
        return RelationalContext(
            relationships=Relationships(parent_id=self.linked_entity_id),
        )


class EntityRegistry:
    """Kind tag -> entity model, used to hydrate ChangeEvent payloads."""

    def __init__(self, defaults: bool = True) -> None:
        self._models: Dict[str, Type[BaseModel]] = {}
        if defaults:
            self.register(EntityKind.TASK, Task)
            self.register(EntityKind.EVENT, CalendarEvent)
            self.register(EntityKind.APPOINTMENT, CalendarEvent)
            self.register(EntityKind.REMINDER, Reminder)

    def register(self, kind: Any, model_cls: Type[BaseModel]) -> None:
        self._models[getattr(kind, "value", kind)] = model_cls

    def get(self, kind: str) -> Optional[Type[BaseModel]]:
        return self._models.get(kind)

    def hydrate(self, event: ChangeEvent) -> BaseModel:
        """
        Rebuild the entity described by a change event.

        Unknown kinds come back as GenericEntity so they still get a
        default-only context.

        Raises:
            pydantic.ValidationError: the payload does not fit the model
        """
        payload = dict(event.payload or {})
        model_cls = self.get(event.entity_kind)
        if model_cls is None:
            return GenericEntity(
                id=event.entity_id,
                owner_id=event.owner_id,
                kind=event.entity_kind,
                data=payload,
            )
        payload.update(id=event.entity_id, owner_id=event.owner_id, kind=event.entity_kind)
        return model_cls.model_validate(payload)
