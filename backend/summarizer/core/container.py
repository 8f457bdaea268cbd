"""
Service wiring
Every service is built once per application and shared through app.state.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from summarizer.services.backends import BackendRegistry
from summarizer.services.cache_service import CacheManager
from summarizer.services.cost_optimizer import CostOptimizer
from summarizer.services.error_monitor import ErrorMonitor
from summarizer.services.evaluation import EvaluationEngine
from summarizer.services.feedback_manager import FeedbackManager
from summarizer.services.model_registry import ModelRegistry
from summarizer.services.post_processor import PostProcessor
from summarizer.services.rate_limiter import RateLimiter
from summarizer.services.summarization_engine import SummarizationEngine
from summarizer.services.summarizer_service import SummarizerService
from summarizer.services.task_dispatcher import TaskDispatcher
from summarizer.utils.time_utils import Clock, utc_now


@dataclass
class ServiceContainer:
    registry: ModelRegistry
    cache: CacheManager
    rate_limiter: RateLimiter
    feedback_manager: FeedbackManager
    error_monitor: ErrorMonitor
    dispatcher: TaskDispatcher
    summarizer: SummarizerService

    @classmethod
    def build(
        cls,
        session_factory: Optional[async_sessionmaker] = None,
        backends: Optional[BackendRegistry] = None,
        cache: Optional[CacheManager] = None,
        dispatcher=None,
        engine: Optional[SummarizationEngine] = None,
        clock: Clock = utc_now,
    ) -> "ServiceContainer":
        """
        Wire the services together

        Args:
            session_factory: async session factory, the application database by default
            backends: text generation backends, built from settings by default
            cache: cache manager, built from settings by default
            dispatcher: outbound task dispatcher, Celery by default
            engine: summarization engine, built from backends by default
            clock: time source shared by every service
        """
        if session_factory is None:
            from summarizer.core.database import AsyncSessionLocal
            session_factory = AsyncSessionLocal

        registry = ModelRegistry(session_factory, clock=clock)
        cache = cache or CacheManager.from_settings(session_factory)
        dispatcher = dispatcher or TaskDispatcher()
        rate_limiter = RateLimiter(session_factory, clock=clock)
        error_monitor = ErrorMonitor(session_factory, dispatcher, clock=clock)
        feedback_manager = FeedbackManager(session_factory, registry, dispatcher, clock=clock)
        engine = engine or SummarizationEngine(backends or BackendRegistry.from_settings(), registry)

        summarizer = SummarizerService(
            cache=cache,
            rate_limiter=rate_limiter,
            cost_optimizer=CostOptimizer(registry),
            engine=engine,
            post_processor=PostProcessor(),
            evaluator=EvaluationEngine(),
            error_monitor=error_monitor,
            session_factory=session_factory,
            feedback_manager=feedback_manager,
            clock=clock,
        )
        return cls(
            registry=registry,
            cache=cache,
            rate_limiter=rate_limiter,
            feedback_manager=feedback_manager,
            error_monitor=error_monitor,
            dispatcher=dispatcher,
            summarizer=summarizer,
        )

    async def shutdown(self) -> None:
        await self.cache.drain()
        await self.dispatcher.drain()
