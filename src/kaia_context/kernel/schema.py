from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimeOfDay(str, Enum):
    MORNING = "morning"  # 00:00 - 11:59
    AFTERNOON = "afternoon"  # 12:00 - 17:59
    EVENING = "evening"  # 18:00 - 20:59
    NIGHT = "night"  # 21:00 - 23:59


class EntityKind(str, Enum):
    """Entity kinds known to the context engine."""

    TASK = "TASK"
    EVENT = "EVENT"
    APPOINTMENT = "APPOINTMENT"
    REMINDER = "REMINDER"
    NOTE = "NOTE"
    GOAL = "GOAL"


class ChangeKind(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# =============================================================================
# Dimension 1: Temporal
# =============================================================================


class RelativeTime(BaseModel):
    is_past: bool = False
    is_current: bool = True
    is_future: bool = False
    hours_until: Optional[int] = None
    days_until: Optional[int] = None


class Recurrence(BaseModel):
    pattern: Literal["daily", "weekly", "monthly", "yearly"]
    interval: int = Field(default=1, ge=1)
    end_date: Optional[datetime] = None


class TemporalContext(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    time_of_day: TimeOfDay = TimeOfDay.MORNING
    day_of_week: int = Field(default=0, ge=0, le=6)  # 0 = Sunday
    is_workday: bool = True
    is_holiday: bool = False
    relative_time: RelativeTime = Field(default_factory=RelativeTime)
    recurrence: Optional[Recurrence] = None


# =============================================================================
# Dimension 2: Spatial
# =============================================================================


class Location(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None


class Proximity(BaseModel):
    nearby_entity_ids: List[str] = Field(default_factory=list)
    distance_from_home: Optional[float] = None  # meters
    distance_from_work: Optional[float] = None  # meters


class Mobility(BaseModel):
    requires_travel: bool
    estimated_travel_minutes: Optional[int] = None
    transport_mode: Optional[Literal["walking", "driving", "transit", "cycling"]] = None


class SpatialContext(BaseModel):
    location: Optional[Location] = None
    proximity: Proximity = Field(default_factory=Proximity)
    mobility: Optional[Mobility] = None


# =============================================================================
# Dimension 3: Priority
# =============================================================================


class PriorityFactors(BaseModel):
    urgency: int = Field(default=0, ge=0, le=100)
    importance: int = Field(default=0, ge=0, le=100)
    deadline: Optional[datetime] = None
    dependency_ids: List[str] = Field(default_factory=list)
    blocking_others: bool = False


class PriorityDecay(BaseModel):
    decay_rate: float = 0.0
    last_recalculated: datetime = Field(default_factory=utcnow)


class PriorityContext(BaseModel):
    base_priority: int = Field(default=50, ge=0, le=100)
    computed_priority: int = Field(default=50, ge=0, le=100)
    factors: PriorityFactors = Field(default_factory=PriorityFactors)
    priority_decay: PriorityDecay = Field(default_factory=PriorityDecay)


# =============================================================================
# Dimension 4: Relational
# =============================================================================


class Relationships(BaseModel):
    parent_id: Optional[str] = None
    children_ids: List[str] = Field(default_factory=list)
    related_entity_ids: List[str] = Field(default_factory=list)
    conflicting_entity_ids: List[str] = Field(default_factory=list)


class Cluster(BaseModel):
    cluster_id: str
    cluster_type: Literal["project", "routine", "goal", "context_based"]
    cluster_importance: int = Field(default=0, ge=0, le=100)


class Dependencies(BaseModel):
    blocked_by_ids: List[str] = Field(default_factory=list)
    blocks_ids: List[str] = Field(default_factory=list)
    prerequisite_for_ids: List[str] = Field(default_factory=list)


class RelationalContext(BaseModel):
    relationships: Relationships = Field(default_factory=Relationships)
    clusters: List[Cluster] = Field(default_factory=list)
    dependencies: Dependencies = Field(default_factory=Dependencies)


# =============================================================================
# Dimension 5: Intentional
# =============================================================================


class TimeSlot(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=0, le=23)


class UserIntent(BaseModel):
    primary_goal: str = ""
    secondary_goals: List[str] = Field(default_factory=list)
    action_type: Literal["create", "complete", "postpone", "delete", "update"] = "create"


class BehaviorPatterns(BaseModel):
    typical_completion_minutes: Optional[int] = None
    preferred_time_slots: List[TimeSlot] = Field(default_factory=list)
    completion_rate: float = Field(default=0, ge=0, le=100)
    postponement_frequency: float = Field(default=0, ge=0, le=100)


class EmotionalContext(BaseModel):
    stress_level: int = Field(ge=0, le=100)
    motivation: int = Field(ge=0, le=100)
    satisfaction: int = Field(ge=0, le=100)


class IntentionalContext(BaseModel):
    user_intent: UserIntent = Field(default_factory=UserIntent)
    behavior_patterns: BehaviorPatterns = Field(default_factory=BehaviorPatterns)
    emotional_context: Optional[EmotionalContext] = None


# =============================================================================
# Aggregates
# =============================================================================


class ContextDimensions(BaseModel):
    """The five enriched dimensions, as handed to the scorer."""

    temporal: TemporalContext
    spatial: SpatialContext
    priority: PriorityContext
    relational: RelationalContext
    intentional: IntentionalContext


class UnifiedContext(ContextDimensions):
    """
    The persisted aggregate of one entity's five dimensions plus its score.

    `version` starts at 1 and is bumped by the store on every upsert.
    """

    entity_id: str
    owner_id: str
    entity_kind: str = "GENERIC"
    created_at: datetime = Field(default_factory=utcnow)
    context_score: int = Field(default=50, ge=0, le=100)
    version: int = Field(default=1, ge=1)
    last_updated: datetime = Field(default_factory=utcnow)

    def dimensions(self) -> ContextDimensions:
        return ContextDimensions(
            temporal=self.temporal,
            spatial=self.spatial,
            priority=self.priority,
            relational=self.relational,
            intentional=self.intentional,
        )


class ContextFilters(BaseModel):
    min_score: Optional[int] = Field(default=None, ge=0, le=100)
    entity_kind: Optional[str] = None


class ChangeEvent(BaseModel):
    """An immutable record of a committed mutation on some entity."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"change-{uuid.uuid4()}")
    kind: ChangeKind
    entity_kind: str
    entity_id: str
    owner_id: str
    payload: Optional[dict[str, Any]] = None
    occurred_at: datetime = Field(default_factory=utcnow)
