"""Pacing cycle state kept per story."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class PacingStage(str, Enum):
    """The five beats of the pacing cycle, in their fixed order."""

    MOTIVATION = "MOTIVATION"
    BONUS = "BONUS"
    CONFRONTATION = "CONFRONTATION"
    RESPONSE = "RESPONSE"
    EARNING = "EARNING"

    @property
    def question(self) -> str:
        return _STAGE_QUESTIONS[self]

    @property
    def is_last(self) -> bool:
        return self is PacingStage.EARNING

    def next(self) -> PacingStage:
        """Return the following stage, wrapping from EARNING to MOTIVATION."""
        members = list(PacingStage)
        return members[(members.index(self) + 1) % len(members)]


_STAGE_QUESTIONS = {
    PacingStage.MOTIVATION: "Why must the protagonist act now?",
    PacingStage.BONUS: "What hidden advantage lets the protagonist solve it?",
    PacingStage.CONFRONTATION: "How exactly is the advantage spent to win?",
    PacingStage.RESPONSE: "What reactions does the victory set off?",
    PacingStage.EARNING: "What does the protagonist gain, and what new conflict is seeded?",
}


class TemplateType(str, Enum):
    """Genre-specific beat patterns used to flavour the cycle."""

    XUANHUAN = "XUANHUAN"
    URBAN = "URBAN"
    SYSTEM = "SYSTEM"
    REBIRTH = "REBIRTH"
    GENERAL = "GENERAL"

    @property
    def pattern(self) -> str:
        return _TEMPLATE_PATTERNS[self]

    @classmethod
    def infer_from_genre(cls, genre: str | None) -> TemplateType:
        if not genre:
            return cls.GENERAL
        lowered = genre.lower()
        for template_type, keywords in _GENRE_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return template_type
        return cls.GENERAL


_TEMPLATE_PATTERNS = {
    TemplateType.XUANHUAN: "secret realm found -> chance encounter -> battle or alchemy -> awed recognition -> breakthrough",
    TemplateType.URBAN: "looked down upon -> hidden identity -> identity revealed -> doubters humbled -> influence expands",
    TemplateType.SYSTEM: "system quest -> system skill -> quest cleared -> server-wide broadcast -> system reward",
    TemplateType.REBIRTH: "familiar event recurs -> past-life knowledge -> early preparation -> everyone stunned -> future changed",
    TemplateType.GENERAL: "conflict erupts -> advantage shown -> conflict resolved -> feedback received -> growth seeded",
}

_GENRE_KEYWORDS: list[tuple[TemplateType, tuple[str, ...]]] = [
    (TemplateType.XUANHUAN, ("玄幻", "修仙", "武侠", "仙侠", "xuanhuan", "xianxia", "wuxia", "cultivation")),
    (TemplateType.URBAN, ("都市", "现代", "商战", "urban", "modern", "business")),
    (TemplateType.SYSTEM, ("系统", "游戏", "system", "game", "litrpg")),
    (TemplateType.REBIRTH, ("重生", "穿越", "rebirth", "reincarnation", "transmigration")),
]


class MotivationStrength(str, Enum):
    GOOD = "GOOD"
    MODERATE = "MODERATE"
    WEAK = "WEAK"


class MotivationResult(BaseModel):
    """Long-horizon motivation read out of a plot brief."""

    motivation: str = ""
    strength: MotivationStrength = MotivationStrength.WEAK
    rationale: str = ""
    optimization: str = ""

    @property
    def found(self) -> bool:
        return bool(self.motivation.strip())

    def as_summary(self) -> str:
        """Compact text stored on the progress row."""
        if not self.found:
            return ""
        return f"{self.motivation} [strength: {self.strength.value}]"


class PacingProgress(BaseModel):
    """Cursor through the pacing cycle for one story."""

    story_id: str
    enabled: bool = True
    current_stage: PacingStage = PacingStage.MOTIVATION
    loop_number: int = 1
    stage_start_chapter: int = 1
    start_chapter: int = 1
    last_updated_chapter: int = 0
    template_type: TemplateType = TemplateType.GENERAL
    stage_analysis: dict[PacingStage, str] = Field(default_factory=dict)
    motivation_summary: str = ""
    motivation_loop: int | None = None

    @field_validator("loop_number")
    @classmethod
    def _loop_at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("loop_number must be >= 1")
        return value

    @property
    def has_motivation_for_loop(self) -> bool:
        """True when a motivation was extracted during the current loop."""
        return bool(self.motivation_summary) and self.motivation_loop == self.loop_number
