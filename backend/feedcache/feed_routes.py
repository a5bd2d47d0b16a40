"""REST endpoints for personalized feed delivery, surfaced under ``/api/feed``."""

from __future__ import annotations

import logging
import threading
from time import perf_counter
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field

from .config import get_settings
from .errors import FeedExhausted, StoreUnavailable, UnsupportedFeedType, UpstreamGenerationFailure
from .models import DEFAULT_FEED_TYPE, DeliveredContent, FeedEntry
from .services import FeedServices, build_services

router = APIRouter(prefix="/api/feed", tags=["feed"])
logger = logging.getLogger(__name__)

_services_lock = threading.Lock()


class GenerateFeedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    feed_type: str = Field(default=DEFAULT_FEED_TYPE, alias="type", min_length=1)


class FeedbackRequest(BaseModel):
    content_id: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    feedback_type: Optional[str] = Field(default=None, max_length=64)
    comments: Optional[str] = Field(default=None, max_length=2000)


def get_feed_services(request: Request) -> FeedServices:
    services = getattr(request.app.state, "feed_services", None)
    if services is None:
        with _services_lock:
            services = getattr(request.app.state, "feed_services", None)
            if services is None:
                services = build_services(get_settings())
                request.app.state.feed_services = services
    return services


def current_user_id(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required.")
    return x_user_id.strip()


def require_admin(
    user_id: str = Depends(current_user_id),
    services: FeedServices = Depends(get_feed_services),
) -> str:
    try:
        user = services.store.get_user(user_id)
    except StoreUnavailable as exc:
        raise _unavailable(exc) from exc
    if user is None or not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required.")
    return user_id


def _unavailable(exc: StoreUnavailable) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


def _unsupported(exc: UnsupportedFeedType) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


def _feed_payload(feed: FeedEntry) -> Dict[str, Any]:
    return {
        "id": feed.id,
        "type": feed.feed_type,
        "content_count": feed.remaining,
        "created_at": feed.created_at,
        "expires_at": feed.expires_at,
        "access_count": feed.access_count,
        "content_consumed": feed.content_consumed,
        "avg_engagement": feed.avg_engagement,
        "last_accessed": feed.last_accessed,
    }


def _delivery_payload(delivered: DeliveredContent, started_at: float, method: str) -> Dict[str, Any]:
    return {
        "success": True,
        "content": delivered.content.model_dump(mode="json"),
        "delivery_metadata": delivered.delivery_metadata.model_dump(mode="json"),
        "performance": {
            "response_time_ms": round((perf_counter() - started_at) * 1000.0, 2),
            "delivery_method": method,
        },
    }


@router.get("/next-content")
def next_content(
    feed_type: str = Query(default=DEFAULT_FEED_TYPE, alias="type"),
    user_id: str = Depends(current_user_id),
    services: FeedServices = Depends(get_feed_services),
) -> Dict[str, Any]:
    started_at = perf_counter()
    try:
        delivered = services.manager.consume_next(user_id, feed_type)
        return _delivery_payload(delivered, started_at, "personalized_feed")
    except UnsupportedFeedType as exc:
        raise _unsupported(exc) from exc
    except StoreUnavailable as exc:
        raise _unavailable(exc) from exc
    except (FeedExhausted, UpstreamGenerationFailure) as exc:
        logger.warning("Feed delivery failed for user %s, using fallback generation: %s", user_id, exc)
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected feed delivery error for user %s, using fallback generation", user_id)

    try:
        delivered = services.manager.generate_on_demand(user_id, feed_type)
    except StoreUnavailable as exc:
        raise _unavailable(exc) from exc
    except UpstreamGenerationFailure as exc:
        logger.error("Fallback generation failed for user %s: %s", user_id, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Unable to generate content right now.",
        ) from exc
    return _delivery_payload(delivered, started_at, "fallback_generation")


@router.post("/generate")
def generate_feed(
    payload: GenerateFeedRequest = GenerateFeedRequest(),
    user_id: str = Depends(current_user_id),
    services: FeedServices = Depends(get_feed_services),
) -> Dict[str, Any]:
    try:
        feed = services.manager.generate_or_reuse_feed(user_id, payload.feed_type)
    except UnsupportedFeedType as exc:
        raise _unsupported(exc) from exc
    except StoreUnavailable as exc:
        raise _unavailable(exc) from exc
    except UpstreamGenerationFailure as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return {
        "success": True,
        "message": "Feed generated successfully",
        "feed": {
            "id": feed.id,
            "type": feed.feed_type,
            "content_count": feed.remaining,
            "expires_at": feed.expires_at,
        },
    }


@router.get("/status")
def feed_status(
    user_id: str = Depends(current_user_id),
    services: FeedServices = Depends(get_feed_services),
) -> Dict[str, Any]:
    try:
        summary = services.manager.feed_status(user_id)
    except StoreUnavailable as exc:
        raise _unavailable(exc) from exc
    return {
        "success": True,
        "feeds": [_feed_payload(feed) for feed in summary.feeds],
        "analytics": summary.analytics.model_dump(mode="json") if summary.analytics else None,
        "recommendations": summary.recommendations.model_dump(mode="json"),
    }


@router.post("/feedback")
def submit_feedback(
    payload: FeedbackRequest,
    user_id: str = Depends(current_user_id),
    services: FeedServices = Depends(get_feed_services),
) -> Dict[str, Any]:
    try:
        updated = services.manager.record_feedback(
            user_id,
            payload.content_id,
            payload.rating,
            feedback_type=payload.feedback_type,
            comments=payload.comments,
        )
    except StoreUnavailable as exc:
        raise _unavailable(exc) from exc
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Content not found.")
    return {"success": True, "message": "Feedback recorded successfully", "content_id": updated.id}


@router.get("/stats")
def feed_stats(
    _: str = Depends(require_admin),
    services: FeedServices = Depends(get_feed_services),
) -> Dict[str, Any]:
    try:
        statistics = services.manager.feed_statistics()
    except StoreUnavailable as exc:
        raise _unavailable(exc) from exc
    return {"success": True, "stats": statistics.model_dump(mode="json")}


@router.post("/refresh-all", status_code=status.HTTP_202_ACCEPTED)
def refresh_all(
    admin_id: str = Depends(require_admin),
    services: FeedServices = Depends(get_feed_services),
) -> Dict[str, Any]:
    started = services.scheduler.trigger("refresh_feeds")
    logger.info("Admin %s requested a feed refresh (started=%s)", admin_id, started)
    message = "Feed refresh started in background" if started else "Feed refresh already in progress"
    return {"success": True, "started": started, "message": message}


__all__ = ["current_user_id", "get_feed_services", "require_admin", "router"]
