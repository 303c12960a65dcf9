"""FastAPI application entry point"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field, HttpUrl

from starsync.config.database import SessionLocal, init_db
from starsync.config.settings import settings
from starsync.crawlers.stars.client import GitHubStargazerClient
from starsync.crawlers.stars.sync_engine import StarSyncEngine
from starsync.errors import InvalidRequest, PersistenceFailure
from starsync.jobs.notifier import WebhookNotifier
from starsync.jobs.tracker import JobRegistry, JobTracker
from starsync.services.stars.analytics import StarAnalyticsService
from starsync.services.stars.star_store import StarStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class RepositoryRef(BaseModel):
    owner: str = Field(min_length=1)
    name: str = Field(min_length=1)


class SyncRequest(RepositoryRef):
    notify_url: Optional[HttpUrl] = None


class MetricsRequest(BaseModel):
    repositories: List[RepositoryRef]
    metrics: List[str] = Field(default_factory=lambda: ["position"])
    relative: bool = False


class ChartRequest(BaseModel):
    repositories: List[RepositoryRef]
    metric: str = "position"
    relative: bool = False


@dataclass
class AppServices:
    """Collaborators shared by every request of one application instance."""

    store: StarStore
    tracker: JobTracker
    analytics: StarAnalyticsService
    client: Optional[GitHubStargazerClient] = None


def build_services() -> AppServices:
    store = StarStore(SessionLocal)
    client = GitHubStargazerClient()
    tracker = JobTracker(
        StarSyncEngine(client, store),
        registry=JobRegistry(),
        notifier=WebhookNotifier(),
    )
    return AppServices(store=store, tracker=tracker, analytics=StarAnalyticsService(store), client=client)


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        init_db()
        yield
        if services.client is not None:
            await services.client.aclose()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Repository star-history ingestion and metrics service",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure properly in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidRequest)
    async def invalid_request_handler(_: Request, exc: InvalidRequest):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(PersistenceFailure)
    async def persistence_failure_handler(_: Request, exc: PersistenceFailure):
        logger.error(f"Star store unavailable: {exc}")
        return JSONResponse(status_code=503, content={"detail": "star store unavailable"})

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "starsync",
            "version": settings.APP_VERSION,
        }

    @app.post("/api/stars/sync", status_code=202)
    async def start_sync(body: SyncRequest):
        """Start a background sync of a repository's full star history"""
        notify_url = str(body.notify_url) if body.notify_url is not None else None
        job_id = services.tracker.create(body.owner.strip(), body.name.strip(), notify_url)
        status = services.tracker.get(job_id)
        logger.info(f"Star sync requested for {body.owner}/{body.name}: job {job_id}")
        return {"job_id": job_id, "state": status.state.value if status else None}

    @app.get("/api/stars/jobs/{job_id}")
    def get_job(job_id: str):
        """Poll a sync job"""
        status = services.tracker.get(job_id)
        if status is None:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
        return status.to_dict()

    @app.post("/api/stars/daily")
    def read_daily_counts(body: RepositoryRef):
        """Stars per day for one repository; empty when nothing is stored"""
        repository = services.store.get_repository(body.owner, body.name)
        if repository is None:
            return []
        return [
            {"date": day.isoformat(), "count": count}
            for day, count in services.store.get_daily_counts(repository.id)
        ]

    @app.post("/api/stars/metrics")
    def read_metrics(body: MetricsRequest):
        """Position/speed/acceleration series for up to the configured number of repositories"""
        processed = services.analytics.build(
            [(repo.owner, repo.name) for repo in body.repositories],
            body.metrics,
            relative=body.relative,
        )
        return {"relative": body.relative, "results": [item.to_dict() for item in processed]}

    @app.post("/api/stars/chart")
    def read_chart(body: ChartRequest):
        """Rendered chart of one metric"""
        chart = services.analytics.render(
            [(repo.owner, repo.name) for repo in body.repositories],
            body.metric,
            relative=body.relative,
        )
        return Response(
            content=chart.content,
            media_type=chart.media_type,
            headers={"Cache-Control": "public, max-age=3600"},
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "starsync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
