"""Calibration parameter derivation and storage services."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.calibration import Calibration
from services.schemas import CalibrationAnswer, EffectiveParameters, ParameterRanges, Range

logger = logging.getLogger(__name__)


CREATIVITY_KEYWORDS = ("creative", "varied", "exploratory", "free-form")
PRECISION_KEYWORDS = ("precise", "accurate", "structured", "consistent")
LONG_ANSWER_WORDS = 20
CALIBRATION_MODES = {"quick", "deep"}

CREATIVE_INSIGHTS = [
    "Your preferences lean toward creative and exploratory responses",
    "Higher temperature settings will suit your needs",
    "Expect more varied and imaginative outputs",
]
PRECISE_INSIGHTS = [
    "Your preferences favor precision and consistency",
    "Lower temperature settings will provide better results",
    "Responses will be more focused and deterministic",
]
BALANCED_INSIGHTS = [
    "You prefer a balanced approach",
    "Moderate parameter settings will work well",
    "Expect a mix of reliability and creativity",
]


def _answer_weight(answer: CalibrationAnswer) -> float:
    if answer.weight is None:
        return 1.0
    return max(float(answer.weight), 0.0)


def score_answers(answers: Sequence[CalibrationAnswer]) -> Tuple[float, float]:
    """Return (creativity_score, precision_score) accumulated over all answers."""
    creativity = 0.0
    precision = 0.0
    for answer in answers:
        weight = _answer_weight(answer)
        value = answer.answer
        if isinstance(value, str):
            text = value.lower()
            if any(keyword in text for keyword in CREATIVITY_KEYWORDS):
                creativity += weight
            if any(keyword in text for keyword in PRECISION_KEYWORDS):
                precision += weight
            # Long free-text answers are a weak creativity signal.
            if len(text.split()) > LONG_ANSWER_WORDS:
                creativity += 0.5 * weight
        elif isinstance(value, list) and len(value) > 1:
            creativity += 0.5 * weight
    return creativity, precision


def _ratios(creativity: float, precision: float) -> Tuple[float, float]:
    total = max(1.0, creativity + precision)
    return creativity / total, precision / total


def derive_parameter_ranges(answers: Sequence[CalibrationAnswer]) -> ParameterRanges:
    """Map calibration answers to temperature/topP/maxTokens/frequencyPenalty ranges."""
    creativity_ratio, precision_ratio = _ratios(*score_answers(answers))

    return ParameterRanges(
        temperature=Range(
            min=round(0.3 + creativity_ratio * 0.4, 2),
            max=round(0.7 + creativity_ratio * 0.3, 2),
        ),
        top_p=Range(
            min=round(0.6 + creativity_ratio * 0.2, 2),
            max=round(0.85 + creativity_ratio * 0.15, 2),
        ),
        max_tokens=Range(
            min=int(round(300 + precision_ratio * 200)),
            max=int(round(1000 + creativity_ratio * 1500)),
        ),
        frequency_penalty=Range(
            min=0.0,
            max=round(0.3 + creativity_ratio * 0.4, 2),
        ),
    )


def get_calibration_insights(answers: Sequence[CalibrationAnswer]) -> List[str]:
    creativity, precision = score_answers(answers)
    if creativity > precision:
        return list(CREATIVE_INSIGHTS)
    if precision > creativity:
        return list(PRECISE_INSIGHTS)
    return list(BALANCED_INSIGHTS)


def derive_calibration(answers: Sequence[CalibrationAnswer]) -> Tuple[ParameterRanges, List[str]]:
    return derive_parameter_ranges(answers), get_calibration_insights(answers)


def calibration_ranges(calibration: Calibration) -> ParameterRanges:
    """Read the stored ranges of a calibration row."""
    return ParameterRanges(
        temperature=Range(min=float(calibration.temperature_min), max=float(calibration.temperature_max)),
        top_p=Range(min=float(calibration.top_p_min), max=float(calibration.top_p_max)),
        max_tokens=Range(min=float(calibration.max_tokens_min), max=float(calibration.max_tokens_max)),
        frequency_penalty=Range(
            min=float(calibration.frequency_penalty_min),
            max=float(calibration.frequency_penalty_max),
        ),
    )


def midpoint_parameters(ranges: ParameterRanges) -> EffectiveParameters:
    """Effective parameters at the centre of each range; presencePenalty is always 0."""
    return EffectiveParameters(
        temperature=ranges.temperature.midpoint,
        top_p=ranges.top_p.midpoint,
        max_tokens=int((ranges.max_tokens.min + ranges.max_tokens.max) // 2),
        frequency_penalty=ranges.frequency_penalty.midpoint,
        presence_penalty=0.0,
    )


def serialize_calibration(calibration: Calibration) -> Dict[str, Any]:
    ranges = calibration_ranges(calibration)
    return {
        "id": calibration.id,
        "user_id": calibration.user_id,
        "mode": calibration.mode,
        "answers": calibration.answers or [],
        "ranges": ranges.model_dump(by_alias=True),
        "insights": calibration.insights or [],
        "created_at": calibration.created_at.isoformat() if calibration.created_at else None,
    }


async def save_calibration(
    user_id: str,
    db: AsyncSession,
    *,
    mode: str,
    answers: Sequence[CalibrationAnswer],
) -> Calibration:
    """Derive ranges/insights for the answers and persist them as a new calibration."""
    if mode not in CALIBRATION_MODES:
        raise ValueError(f"Unsupported calibration mode: {mode}")

    ranges, insights = derive_calibration(answers)
    calibration = Calibration(
        user_id=user_id,
        mode=mode,
        answers=[answer.model_dump(by_alias=True) for answer in answers],
        temperature_min=ranges.temperature.min,
        temperature_max=ranges.temperature.max,
        top_p_min=ranges.top_p.min,
        top_p_max=ranges.top_p.max,
        max_tokens_min=int(ranges.max_tokens.min),
        max_tokens_max=int(ranges.max_tokens.max),
        frequency_penalty_min=ranges.frequency_penalty.min,
        frequency_penalty_max=ranges.frequency_penalty.max,
        insights=insights,
    )
    db.add(calibration)
    await db.commit()
    await db.refresh(calibration)
    logger.info("calibration_saved user=%s calibration=%s mode=%s", user_id, calibration.id, mode)
    return calibration


async def get_calibration_for_user(
    user_id: str,
    db: AsyncSession,
    calibration_id: Optional[str] = None,
) -> Optional[Calibration]:
    """Return the requested calibration when it belongs to the user, else the user's latest one."""
    if calibration_id:
        result = await db.execute(
            select(Calibration).where(
                Calibration.id == calibration_id,
                Calibration.user_id == user_id,
            )
        )
        calibration = result.scalar_one_or_none()
        if calibration is not None:
            return calibration
        logger.info("Calibration %s not found for user %s; falling back to latest", calibration_id, user_id)

    result = await db.execute(
        select(Calibration)
        .where(Calibration.user_id == user_id)
        .order_by(Calibration.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
