"""Service wiring. One container is built at startup and shared by all requests."""

from dataclasses import dataclass
from typing import Callable

from fastapi import Request
from sqlalchemy.orm import Session

from botlocal.config import settings
from botlocal.database import SessionLocal
from botlocal.services.billing_service import BillingEventProcessor
from botlocal.services.dispatch_service import Dispatcher
from botlocal.services.idempotency_service import IdempotencyGuard, RecentEventCache
from botlocal.services.llm import OpenAICompatibleProvider
from botlocal.services.pipeline_service import ChatPipeline
from botlocal.services.plan_service import DEFAULT_PLANS, PlanCatalog, PlanLimiter
from botlocal.services.reply_service import ReplyOrchestrator
from botlocal.services.worker_pool import WorkerPool


@dataclass
class ServiceContainer:
    session_factory: Callable[[], Session]
    catalog: PlanCatalog
    guard: IdempotencyGuard
    limiter: PlanLimiter
    orchestrator: ReplyOrchestrator
    dispatcher: Dispatcher
    pipeline: ChatPipeline
    billing: BillingEventProcessor
    worker_pool: WorkerPool


def build_container(session_factory: Callable[[], Session] = SessionLocal) -> ServiceContainer:
    catalog = DEFAULT_PLANS
    guard = IdempotencyGuard(RecentEventCache(settings.dedup_cache_size, settings.dedup_ttl_seconds))
    limiter = PlanLimiter(catalog)
    llm = OpenAICompatibleProvider(
        api_key=settings.llm_api_key,
        base_url=settings.llm_api_url,
        default_model=settings.llm_model,
        default_timeout_seconds=settings.llm_timeout_seconds,
    )
    orchestrator = ReplyOrchestrator.from_settings(llm)
    dispatcher = Dispatcher()
    pipeline = ChatPipeline(session_factory, guard, limiter, orchestrator, dispatcher)
    billing = BillingEventProcessor(
        webhook_secret=settings.stripe_webhook_secret,
        catalog=catalog,
        processing_timeout_seconds=settings.billing_processing_timeout_seconds,
    )
    worker_pool = WorkerPool(
        workers=settings.worker_count,
        queue_size=settings.worker_queue_size,
        max_attempts=settings.worker_max_attempts,
        retry_backoff_seconds=settings.worker_retry_backoff_seconds,
        drain_timeout_seconds=settings.worker_drain_timeout_seconds,
    )
    return ServiceContainer(
        session_factory=session_factory,
        catalog=catalog,
        guard=guard,
        limiter=limiter,
        orchestrator=orchestrator,
        dispatcher=dispatcher,
        pipeline=pipeline,
        billing=billing,
        worker_pool=worker_pool,
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
