import asyncio

import pytest
from sqlalchemy import select

from models.analytics_summary import AnalyticsSummary
from services.analytics import upsert_analytics_summary
from services.metrics import calculate_metrics


async def _fold(session_maker, text, calibration_id="cal_1", user_id="user_a"):
    async with session_maker() as db:
        return await upsert_analytics_summary(
            db,
            user_id=user_id,
            calibration_id=calibration_id,
            metrics=calculate_metrics(text),
        )


async def _summaries(session_maker):
    async with session_maker() as db:
        return list((await db.execute(select(AnalyticsSummary))).scalars().all())


@pytest.mark.asyncio
async def test_first_upsert_creates_summary(session_maker):
    summary = await _fold(session_maker, "Entropy measures disorder.")

    assert summary.experiment_count == 1
    assert summary.last_metrics["length"] == 3
    assert summary.metrics_summary["length"] == 3.0
    assert set(summary.metrics_summary) == {
        "length",
        "creativity",
        "coherence",
        "structure",
        "completeness",
        "lexicalDiversity",
    }


@pytest.mark.asyncio
async def test_sequential_upserts_average_metrics(session_maker):
    await _fold(session_maker, "one two")
    summary = await _fold(session_maker, "one two three four")

    assert summary.experiment_count == 2
    assert summary.metrics_summary["length"] == 3.0
    assert summary.last_metrics["length"] == 4


@pytest.mark.asyncio
async def test_concurrent_upserts_count_every_experiment(session_maker):
    texts = ["one", "one two", "one two three", "one two three four"]

    await asyncio.gather(*[_fold(session_maker, text) for text in texts])

    summaries = await _summaries(session_maker)
    assert len(summaries) == 1
    assert summaries[0].experiment_count == 4
    assert summaries[0].length_total == 10.0
    assert summaries[0].metrics_summary["length"] == 2.5


@pytest.mark.asyncio
async def test_summaries_are_kept_per_user_and_calibration(session_maker):
    await _fold(session_maker, "alpha", calibration_id="cal_1")
    await _fold(session_maker, "beta", calibration_id="cal_2")
    await _fold(session_maker, "gamma", calibration_id="cal_1", user_id="user_b")

    summaries = await _summaries(session_maker)
    assert len(summaries) == 3
    assert all(summary.experiment_count == 1 for summary in summaries)
