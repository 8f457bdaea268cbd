"""
Feedback manager
Stores user ratings, feeds them into model metrics and queues retraining
examples and jobs.
"""
import uuid
from collections import Counter, defaultdict
from datetime import timedelta
from typing import Any, Dict, List

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from summarizer.core.config import settings
from summarizer.models.document import Document, Summary
from summarizer.models.feedback import Feedback
from summarizer.schemas.summarization import FeedbackData, FeedbackStats, FeedbackType
from summarizer.services.model_registry import ModelRegistry
from summarizer.utils.errors import InputValidationError
from summarizer.utils.time_utils import Clock, utc_now

logger = structlog.get_logger()

ANALYTICS_RANGES = {"day": 1, "week": 7, "month": 30}

# feedback type -> (share threshold, suggestion)
SUGGESTION_RULES = {
    FeedbackType.TOO_TECHNICAL: (0.10, "Summaries are often too technical; prefer simpler wording."),
    FeedbackType.INCOMPLETE: (0.10, "Summaries often miss key points; increase coverage or length."),
    FeedbackType.FACTUAL_ERROR: (0.05, "Factual errors reported; tighten grounding in the source text."),
}


def _parse_summary_id(summary_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(summary_id))
    except ValueError as e:
        raise InputValidationError(f"Invalid summary id: {summary_id}", details={"field": "summary_id"}) from e


class FeedbackManager:
    """Feedback collection and analysis"""

    def __init__(self, session_factory: async_sessionmaker, registry: ModelRegistry, dispatcher=None,
                 clock: Clock = utc_now):
        self._session_factory = session_factory
        self.registry = registry
        self.dispatcher = dispatcher
        self._clock = clock

    @staticmethod
    def needs_retraining_example(feedback: FeedbackData) -> bool:
        return feedback.rating <= settings.LOW_RATING_THRESHOLD or bool(feedback.edited_summary)

    async def collect_feedback(self, feedback: FeedbackData) -> None:
        """
        Store a rating and react to it

        Low ratings and edited summaries queue a retraining example; the
        rating is blended into the producing model's quality metric.

        Args:
            feedback: validated feedback
        """
        summary_uuid = _parse_summary_id(feedback.summary_id)
        async with self._session_factory() as db:
            db.add(Feedback(
                summary_id=summary_uuid,
                user_id=feedback.user_id,
                rating=feedback.rating,
                feedback_type=feedback.feedback_type.value,
                edited_summary=feedback.edited_summary,
                comments=feedback.comments,
                created_at=self._clock(),
            ))
            await db.commit()

            summary = await db.get(Summary, summary_uuid)
            source_text = None
            if summary is not None:
                document = await db.get(Document, summary.document_id)
                source_text = document.original_text if document else None

        logger.info("Feedback collected", summary_id=feedback.summary_id, user_id=feedback.user_id,
                    rating=feedback.rating, feedback_type=feedback.feedback_type.value)

        if summary is None:
            logger.warning("Feedback for unknown summary", summary_id=feedback.summary_id)
            return

        if self.needs_retraining_example(feedback) and source_text and self.dispatcher is not None:
            self.dispatcher.dispatch("store_retraining_example", {
                "summary_id": feedback.summary_id,
                "model_version": summary.model_version,
                "source_text": source_text,
                "target_text": feedback.edited_summary or summary.summary_text,
                "rating": feedback.rating,
                "feedback_type": feedback.feedback_type.value,
            })

        if summary.model_version:
            variant = await self.registry.get_model_by_version(summary.model_version)
            if variant is not None:
                await self.registry.update_metrics(variant.id, {"quality": feedback.rating / 5})

    async def get_feedback_stats(self, summary_id: str) -> FeedbackStats:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Feedback).where(Feedback.summary_id == _parse_summary_id(summary_id))
            )
            rows = list(result.scalars().all())

        issues = Counter(row.feedback_type for row in rows if row.feedback_type != FeedbackType.OTHER.value)
        return FeedbackStats(
            summary_id=summary_id,
            total=len(rows),
            average_rating=round(sum(r.rating for r in rows) / len(rows), 2) if rows else 0.0,
            top_issues=[name for name, _ in issues.most_common(3)],
        )

    async def _recent(self, days: int) -> List[Dict[str, Any]]:
        since = self._clock() - timedelta(days=days)
        async with self._session_factory() as db:
            result = await db.execute(
                select(Feedback.rating, Feedback.feedback_type, Summary.model_version)
                .outerjoin(Summary, Summary.id == Feedback.summary_id)
                .where(Feedback.created_at >= since)
            )
            return [
                {"rating": rating, "feedback_type": feedback_type, "model_version": model_version}
                for rating, feedback_type, model_version in result.all()
            ]

    async def get_feedback_analytics(self, time_range: str = "week") -> Dict[str, Any]:
        """
        Feedback totals over a day, week or month

        Returns:
            total, average rating, counts by type and average rating per model version
        """
        if time_range not in ANALYTICS_RANGES:
            raise InputValidationError(f"Unknown time range: {time_range}", details={"field": "range"})
        rows = await self._recent(ANALYTICS_RANGES[time_range])

        by_model: Dict[str, List[int]] = defaultdict(list)
        for row in rows:
            by_model[row["model_version"] or "unknown"].append(row["rating"])
        return {
            "range": time_range,
            "total": len(rows),
            "average_rating": round(sum(r["rating"] for r in rows) / len(rows), 2) if rows else 0.0,
            "by_type": dict(Counter(r["feedback_type"] for r in rows)),
            "by_model": {name: round(sum(v) / len(v), 2) for name, v in by_model.items()},
        }

    async def trigger_retraining(self) -> bool:
        """
        Queue a retraining job when last week's feedback is poor

        Requires at least RETRAINING_MIN_SAMPLES ratings in the past week
        averaging below RETRAINING_RATING_FLOOR.

        Returns:
            True when a job was dispatched
        """
        since = self._clock() - timedelta(days=7)
        async with self._session_factory() as db:
            count, average = (await db.execute(
                select(func.count(Feedback.id), func.avg(Feedback.rating)).where(Feedback.created_at >= since)
            )).one()

        if count < settings.RETRAINING_MIN_SAMPLES:
            logger.info("Retraining skipped, not enough feedback", samples=count)
            return False
        if average is None or float(average) >= settings.RETRAINING_RATING_FLOOR:
            logger.info("Retraining skipped, ratings acceptable", samples=count, average_rating=average)
            return False

        logger.warning("Triggering retraining", samples=count, average_rating=float(average))
        if self.dispatcher is not None:
            self.dispatcher.dispatch("run_retraining_job", {
                "samples": count,
                "average_rating": round(float(average), 3),
                "requested_at": self._clock().isoformat(),
            })
        return True

    async def get_improvement_suggestions(self, time_range: str = "month") -> List[str]:
        analytics = await self.get_feedback_analytics(time_range)
        total = analytics["total"]
        if not total:
            return []
        suggestions = []
        for feedback_type, (threshold, text) in SUGGESTION_RULES.items():
            if analytics["by_type"].get(feedback_type.value, 0) / total > threshold:
                suggestions.append(text)
        if analytics["average_rating"] < 3.0:
            suggestions.append("Overall ratings are low; review the default model and prompts.")
        return suggestions
