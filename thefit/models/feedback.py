"""AI form-analysis feedback attached to an exercise set.

Feedback arrives either from the workout API (``ai_feedback``) or from the
local cache (the legacy ``memo`` string). Both are decoded once, here, into
one of four variants:

- ``NoFeedback``: nothing known yet.
- ``PendingFeedback``: a video was uploaded and analysis is still running.
- ``StructuredFeedback``: headline plus positives/improvements/action items.
- ``PlainTextFeedback``: a free-form advisory string.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

# 업로드 직후 분석 대기 상태를 나타내는 자리표시 문구
PENDING_MEMO = "영상 업로드 완료 - 분석 대기 중..."
# 서버 항목에 무게도 피드백도 없을 때 모바일 클라이언트가 쓰던 문구
NO_FEEDBACK_MEMO = "피드백 없음"


@dataclass(frozen=True)
class NoFeedback:
    """No feedback known for the set."""

    @property
    def memo(self) -> str:
        return ""

    @property
    def is_analyzed(self) -> bool:
        return False


@dataclass(frozen=True)
class PendingFeedback:
    """Video uploaded, analysis not finished."""

    @property
    def memo(self) -> str:
        return PENDING_MEMO

    @property
    def is_analyzed(self) -> bool:
        return False


@dataclass(frozen=True)
class StructuredFeedback:
    """Structured AI feedback."""

    headline: str = ""
    positives: tuple[str, ...] = field(default_factory=tuple)
    improvements: tuple[str, ...] = field(default_factory=tuple)
    action_items: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not (self.headline or self.positives or self.improvements or self.action_items)

    @property
    def memo(self) -> str:
        """JSON object string, the format the mobile client cached."""
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @property
    def is_analyzed(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "headline": self.headline,
            "positives": list(self.positives),
            "improvements": list(self.improvements),
            "action_items": list(self.action_items),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StructuredFeedback":
        return cls(
            headline=str(data.get("headline") or "").strip(),
            positives=_string_tuple(data.get("positives")),
            improvements=_string_tuple(data.get("improvements")),
            # camelCase는 구버전 캐시 호환용
            action_items=_string_tuple(data.get("action_items", data.get("actionItems"))),
        )


@dataclass(frozen=True)
class PlainTextFeedback:
    """Free-form advisory text."""

    text: str

    @property
    def memo(self) -> str:
        return self.text

    @property
    def is_analyzed(self) -> bool:
        return True


Feedback = Union[NoFeedback, PendingFeedback, StructuredFeedback, PlainTextFeedback]


def _string_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(item) for item in value if item is not None and str(item).strip())


def feedback_from_ai(ai_feedback: Any) -> Optional[Feedback]:
    """Decode the API's ``ai_feedback`` field.

    Returns None when the field carries no usable narrative, so the caller
    can decide between pending and no feedback.
    """
    if ai_feedback is None:
        return None

    if isinstance(ai_feedback, dict):
        structured = StructuredFeedback.from_dict(ai_feedback)
        return None if structured.is_empty else structured

    if isinstance(ai_feedback, str):
        text = ai_feedback.strip()
        if not text or text in (PENDING_MEMO, NO_FEEDBACK_MEMO):
            return None
        decoded = decode_memo(text)
        return decoded if decoded.is_analyzed else None

    logger.warning("Ignoring ai_feedback of unexpected type %s", type(ai_feedback).__name__)
    return None


def decode_memo(memo: Optional[str]) -> Feedback:
    """Decode a cached memo string back into a feedback variant."""
    if memo is None:
        return NoFeedback()

    text = str(memo).strip()
    if not text or text == NO_FEEDBACK_MEMO:
        return NoFeedback()
    if text == PENDING_MEMO:
        return PendingFeedback()

    if text.startswith("{") and text.endswith("}"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            # JSON이 아니면 원문 그대로 사용
            return PlainTextFeedback(text)
        if isinstance(data, dict):
            structured = StructuredFeedback.from_dict(data)
            return NoFeedback() if structured.is_empty else structured

    return PlainTextFeedback(text)
