"""FastAPI REST API server for PipelineWatch."""

import asyncio
import json
import logging
from typing import Callable

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..config import PipelineConfig, load_config
from ..engine.aggregator import StreamingAggregator
from ..runner.process import ProcessRunner
from ..runs.errors import SourceListUnavailable
from ..runs.models import Repository
from .refresh_manager import RefreshManager

logger = logging.getLogger(__name__)


# Response Models
class RunItem(BaseModel):
    """One workflow run."""
    id: str
    name: str
    status: str
    conclusion: str = ""
    created_at: str = ""
    updated_at: str = ""
    repository: str = ""
    branch: str = ""
    commit_sha: str = ""
    workflow_url: str = ""
    workflow_name: str = ""
    duration_seconds: int | None = None


class RunsResponse(BaseModel):
    """Aggregated runs across repositories."""
    active: list[RunItem] = Field(default_factory=list)
    recent: list[RunItem] = Field(default_factory=list)
    error: str | None = Field(None, description="Per-source failures, '; '-separated")


class SourceItem(BaseModel):
    """A repository that would be queried."""
    full_name: str
    owner: str
    last_activity: str = ""
    private: bool = False
    archived: bool = False


class SourcesResponse(BaseModel):
    count: int
    sources: list[SourceItem]


def _source_item(repo: Repository) -> SourceItem:
    return SourceItem(
        full_name=repo.full_name,
        owner=repo.owner,
        last_activity=repo.last_activity,
        private=repo.private,
        archived=repo.archived,
    )


def create_app(
    config: PipelineConfig | None = None,
    config_path: str | None = None,
    runner_factory: Callable[[], ProcessRunner] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if config is None:
        config = PipelineConfig.from_mapping(load_config(config_path)) if config_path else PipelineConfig()

    app = FastAPI(
        title="PipelineWatch API",
        description="GitHub Actions workflow runs aggregated across repositories",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _aggregator(exclude: list[str] | None = None) -> StreamingAggregator:
        cfg = config
        if exclude:
            cfg = config.model_copy(update={"exclude_owners": set(config.exclude_owners) | set(exclude)})
        runner = runner_factory() if runner_factory else None
        return StreamingAggregator(cfg, runner=runner)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "gh_available": ProcessRunner().ensure_available(config.gh_command) is None,
        }

    @app.get("/sources", response_model=SourcesResponse)
    async def list_sources(
        exclude: list[str] | None = Query(None, description="Extra owners to exclude"),
    ):
        """List the repositories an aggregation would query."""
        try:
            repos = await _aggregator(exclude).list_sources()
        except SourceListUnavailable as e:
            raise HTTPException(status_code=502, detail=f"Failed to fetch repositories: {e}")
        return SourcesResponse(count=len(repos), sources=[_source_item(r) for r in repos])

    @app.get("/runs", response_model=RunsResponse)
    async def get_runs(
        exclude: list[str] | None = Query(None, description="Extra owners to exclude"),
    ):
        """Collect active and recent runs and return the merged view."""
        result, error = await _aggregator(exclude).aggregate()
        if error:
            logger.warning("Run aggregation reported errors: %s", error)
        if result is None:
            raise HTTPException(status_code=502, detail=error)
        return RunsResponse(**result.to_dict(), error=error)

    @app.get("/runs/stream")
    async def stream_runs(
        exclude: list[str] | None = Query(None, description="Extra owners to exclude"),
    ):
        """NDJSON stream: one line per snapshot, then one final line."""
        queue: asyncio.Queue = asyncio.Queue()

        def on_progress(snapshot):
            queue.put_nowait({"type": "snapshot", **snapshot.to_dict()})

        def on_complete(result, error):
            payload = {"type": "complete", "error": error, "result": None}
            if result is not None:
                payload["result"] = result.to_dict()
            queue.put_nowait(payload)

        aggregator = _aggregator(exclude)

        async def event_generator():
            task = asyncio.create_task(aggregator.aggregate(on_progress, on_complete))

            def on_done(t: asyncio.Task) -> None:
                if not t.cancelled() and t.exception() is not None:
                    queue.put_nowait({"type": "complete", "error": str(t.exception()), "result": None})

            task.add_done_callback(on_done)
            try:
                while True:
                    item = await queue.get()
                    yield json.dumps(item) + "\n"
                    if item["type"] == "complete":
                        break
                await asyncio.wait([task])
            finally:
                if not task.done():
                    task.cancel()

        return StreamingResponse(
            event_generator(),
            media_type="application/x-ndjson",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    # ---- Background Refresh Endpoints ----

    refresh_manager = RefreshManager(config, runner_factory=runner_factory)
    app.state.refresh_manager = refresh_manager

    @app.post("/refresh/start")
    async def start_refresh():
        """Start a background refresh."""
        result = refresh_manager.start()
        if result.get("error"):
            raise HTTPException(status_code=409, detail=result["error"])
        return result

    @app.get("/refresh/status")
    async def refresh_status():
        """Get current refresh job status."""
        return refresh_manager.get_status()

    @app.get("/refresh/stream")
    async def refresh_stream(interval: float = Query(1.0, gt=0, le=30)):
        """SSE stream of refresh progress updates."""
        async def event_generator():
            while True:
                status = refresh_manager.get_status()
                yield f"data: {json.dumps(status)}\n\n"
                if status["status"] in ("completed", "failed", "idle"):
                    break
                await asyncio.sleep(interval)

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    return app


def main():
    """Run the API server."""
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="PipelineWatch REST API server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind")
    parser.add_argument("--port", "-p", type=int, default=8000, help="Port to bind")
    parser.add_argument("--config", default=None, help="Config file path")

    args = parser.parse_args()

    app = create_app(config_path=args.config)

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
