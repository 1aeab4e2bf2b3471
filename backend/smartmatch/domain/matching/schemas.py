"""Schemas for the match ranking request and response payloads."""

from __future__ import annotations

from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _clean_facets(value):
	if value is None:
		return []
	if not isinstance(value, (list, tuple)):
		raise ValueError("expected_list")
	cleaned: list[str] = []
	for item in value:
		if not isinstance(item, str):
			raise ValueError("expected_string")
		text = item.strip()
		if text and text not in cleaned:
			cleaned.append(text)
	return cleaned


class MatchFilters(BaseModel):
	model_config = ConfigDict(extra="forbid")

	skills: list[str] = Field(default_factory=list)
	interests: list[str] = Field(default_factory=list)
	goals: list[str] = Field(default_factory=list)
	online_only: bool = False

	@field_validator("skills", "interests", "goals", mode="before")
	def _normalise_facets(cls, value):  # type: ignore[override]
		return _clean_facets(value)


class MatchRequest(BaseModel):
	context: Literal["pulse", "zone"]
	event_id: Optional[UUID] = None
	limit: Optional[int] = Field(default=None, ge=0)
	offset: int = Field(default=0, ge=0)
	filters: MatchFilters = Field(default_factory=MatchFilters)

	@field_validator("filters", mode="before")
	def _default_filters(cls, value):  # type: ignore[override]
		return {} if value is None else value

	@property
	def event_key(self) -> Optional[str]:
		return str(self.event_id) if self.event_id else None


class MatchResult(BaseModel):
	user_id: str
	full_name: str = "User"
	avatar_url: Optional[str] = None
	headline: Optional[str] = None
	organization: Optional[str] = None
	match_score: int = Field(ge=0, le=100)
	shared_skills: list[str] = Field(default_factory=list)
	shared_interests: list[str] = Field(default_factory=list)
	shared_goals: list[str] = Field(default_factory=list)
	is_online: bool = False
	is_premium: bool = False
	is_verified: bool = False
	match_category: Literal["general", "complementary", "professional", "social", "event"] = "general"
	embedding_similarity: Optional[float] = None
	behavioral_score: float = 0.0


class MatchMeta(BaseModel):
	avg_score: int
	processing_time_ms: int
	experiment_id: Optional[str] = None
	variant: str
	weights_used: dict[str, float]


class MatchResponse(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	success: bool = True
	matches: list[MatchResult] = Field(default_factory=list)
	context: Literal["pulse", "zone"]
	total: int
	meta: MatchMeta = Field(alias="_meta")
