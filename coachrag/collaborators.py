"""Narrow read-only collaborators consumed by the engine.

- Profile / ProfileStore: the coaching profile keyed by owner id. Rows are parsed
  into a pydantic model that fails closed on malformed data.
- DocumentDirectory: document metadata (filename) for citations and fallback text.
"""
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy.orm import Session

from coachrag.errors import InvalidRequest
from coachrag.models import Document, UserProfile

logger = logging.getLogger(__name__)


class Profile(BaseModel):
    """Coaching profile of one user.

    Attributes:
        owner_id: The profile's owner.
        current_position: Role or job title.
        primary_function: Main area of work.
        company_size: Free-form size bucket, e.g. "51-200".
        top_challenges: Challenges the user wants coaching on.
        personality_scores: Trait name -> score in [0, 1].
        preferred_coaching_style: Free-form style preference.
    """
    owner_id: str = Field(..., min_length=1)
    current_position: Optional[str] = None
    primary_function: Optional[str] = None
    company_size: Optional[str] = None
    top_challenges: List[str] = Field(default_factory=list)
    personality_scores: Dict[str, float] = Field(default_factory=dict)
    preferred_coaching_style: Optional[str] = None

    @field_validator("personality_scores")
    @classmethod
    def _scores_in_range(cls, v: Dict[str, float]) -> Dict[str, float]:
        for trait, score in v.items():
            if not 0.0 <= score <= 1.0:
                raise ValueError(f"score for {trait!r} must be within [0, 1]")
        return v

    def top_traits(self, n: int = 3) -> List[tuple]:
        """Highest-scoring traits, ties broken alphabetically."""
        ranked = sorted(self.personality_scores.items(), key=lambda kv: (-kv[1], kv[0]))
        return ranked[:n]


class ProfileStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, owner_id: str) -> Optional[Profile]:
        """Load the owner's profile, or None when they have none.

        Raises:
            InvalidRequest: The stored profile is malformed.
        """
        row = self.db.get(UserProfile, owner_id)
        if row is None:
            return None
        try:
            return Profile(
                owner_id=row.owner_id,
                current_position=row.current_position,
                primary_function=row.primary_function,
                company_size=row.company_size,
                top_challenges=row.top_challenges or [],
                personality_scores=row.personality_scores or {},
                preferred_coaching_style=row.preferred_coaching_style,
            )
        except ValidationError as exc:
            logger.warning("malformed profile", extra={"ctx_owner_id": owner_id})
            raise InvalidRequest(f"stored profile is invalid: {exc.error_count()} error(s)") from exc


class DocumentDirectory:
    def __init__(self, db: Session):
        self.db = db

    def filename(self, document_id: str, owner_id: str) -> Optional[str]:
        """Filename of a document the owner holds, or None."""
        doc = self.db.get(Document, document_id)
        if doc is None or doc.owner_id != owner_id:
            return None
        return doc.filename
