"""Value types flowing through the match ranking pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Mapping, Optional

MatchContext = Literal["pulse", "zone"]

PULSE: MatchContext = "pulse"
ZONE: MatchContext = "zone"
CONTEXTS: tuple[str, ...] = (PULSE, ZONE)

MatchCategory = Literal["general", "complementary", "professional", "social", "event"]

WEIGHT_COMPONENTS: tuple[str, ...] = ("embedding", "behavioral", "overlap", "session", "freshness")

CONTROL_VARIANT = "control"


@dataclass(slots=True, frozen=True)
class WeightVector:
	"""Linear-combination coefficients for the five ranking signals.

	Components are not required to sum to 1; the final score is clamped, not normalised.
	"""

	embedding: float
	behavioral: float
	overlap: float
	session: float
	freshness: float

	@classmethod
	def from_mapping(cls, data: Mapping[str, Any]) -> "WeightVector":
		"""Build a vector from a JSON-like mapping, rejecting missing or negative components."""
		values: dict[str, float] = {}
		for name in WEIGHT_COMPONENTS:
			if name not in data or data[name] is None:
				raise ValueError(f"missing_weight:{name}")
			value = float(data[name])
			if value < 0 or value != value:
				raise ValueError(f"invalid_weight:{name}")
			values[name] = value
		return cls(**values)

	def as_dict(self) -> dict[str, float]:
		return {name: getattr(self, name) for name in WEIGHT_COMPONENTS}


DEFAULT_WEIGHTS: dict[str, WeightVector] = {
	PULSE: WeightVector(embedding=0.40, behavioral=0.30, overlap=0.20, session=0.00, freshness=0.10),
	ZONE: WeightVector(embedding=0.25, behavioral=0.15, overlap=0.20, session=0.30, freshness=0.10),
}


@dataclass(slots=True, frozen=True)
class ExperimentWeights:
	experiment_id: Optional[str]
	variant: str
	weights: WeightVector

	@classmethod
	def control(cls, context: str) -> "ExperimentWeights":
		return cls(experiment_id=None, variant=CONTROL_VARIANT, weights=DEFAULT_WEIGHTS[context])


@dataclass(slots=True, frozen=True)
class CandidateProfile:
	"""Read-only snapshot of another user considered for ranking."""

	user_id: str
	full_name: Optional[str] = None
	avatar_url: Optional[str] = None
	headline: Optional[str] = None
	organization: Optional[str] = None
	skills: tuple[str, ...] = ()
	interests: tuple[str, ...] = ()
	looking_for: tuple[str, ...] = ()
	is_online: bool = False
	is_premium: bool = False
	is_verified: bool = False
	last_active_at: Optional[datetime] = None


@dataclass(slots=True, frozen=True)
class RequesterProfile:
	"""Facets of the requesting user used as the comparison baseline."""

	user_id: str
	skills: tuple[str, ...] = ()
	interests: tuple[str, ...] = ()
	looking_for: tuple[str, ...] = ()
	organization: Optional[str] = None
	current_event_id: Optional[str] = None


@dataclass(slots=True, frozen=True)
class InteractionEvent:
	target_user_id: str
	event_type: str
	created_at: datetime


@dataclass(slots=True, frozen=True)
class SignalWeight:
	signal_name: str
	pulse_weight: float
	zone_weight: float
	decay_half_life_days: float
	is_active: bool = True

	def weight_for(self, context: str) -> float:
		return self.zone_weight if context == ZONE else self.pulse_weight


@dataclass(slots=True, frozen=True)
class OverlapResult:
	score: float = 0.0
	shared_skills: tuple[str, ...] = ()
	shared_interests: tuple[str, ...] = ()
	shared_goals: tuple[str, ...] = ()
	goal_complementarity: bool = False


@dataclass(slots=True)
class CandidateSignals:
	"""Per-candidate signal bundle; every field defaults to its neutral value."""

	embedding_similarity: Optional[float] = None
	behavioral: float = 0.0
	overlap: OverlapResult = field(default_factory=OverlapResult)
	session: float = 0.0
	freshness: float = 0.0


@dataclass(slots=True, frozen=True)
class ImpressionRecord:
	"""Compact, persisted summary of one ranked page."""

	requester_id: str
	experiment_id: Optional[str]
	variant: str
	context: str
	event_id: Optional[str]
	candidate_ids: tuple[str, ...]
	scores: tuple[int, ...]
	avg_score: float
	weights_used: dict[str, float]
	processing_time_ms: int


__all__ = [
	"CONTEXTS",
	"CONTROL_VARIANT",
	"CandidateProfile",
	"CandidateSignals",
	"DEFAULT_WEIGHTS",
	"ExperimentWeights",
	"ImpressionRecord",
	"InteractionEvent",
	"MatchCategory",
	"MatchContext",
	"OverlapResult",
	"PULSE",
	"RequesterProfile",
	"SignalWeight",
	"WEIGHT_COMPONENTS",
	"WeightVector",
	"ZONE",
]
