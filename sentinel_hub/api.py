"""
Sentinel Hub API - FastAPI management surface for the agent fleet
"""
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from sentinel_hub.directory import AgentDirectory
from sentinel_hub.discovery import DEFAULT_SCAN_TIMEOUT
from sentinel_hub.durations import parse_duration
from sentinel_hub.errors import (
    AgentNotFoundError,
    AgentUnreachableError,
    DirectoryPersistenceError,
    DiscoveryError,
    InvalidAgentResponseError,
    SinkError,
)
from sentinel_hub.fetcher import AgentFetcher
from sentinel_hub.models import (
    AgentCreateRequest,
    AgentRecord,
    DeleteResponse,
    DiscoveredAgent,
    HealthResponse,
    utc_now,
)
from sentinel_hub.reconcile import reconcile

logger = logging.getLogger(__name__)

# Seconds shutdown waits for an in-flight collection cycle
SCHEDULER_STOP_TIMEOUT = 10.0


def get_directory(request: Request) -> AgentDirectory:
    return request.app.state.directory


def get_fetcher(request: Request) -> AgentFetcher:
    return request.app.state.fetcher


def _lookup(directory: AgentDirectory, agent_id: str) -> AgentRecord:
    try:
        return directory.get(agent_id)
    except AgentNotFoundError:
        raise HTTPException(status_code=404, detail="Agent not found")


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={'error': exc.detail}, headers=getattr(exc, 'headers', None))


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get('msg', 'Invalid request') if errors else 'Invalid request'
    return JSONResponse(status_code=400, content={'error': f"Invalid request: {message}"})


def create_app(
    directory: AgentDirectory,
    fetcher: AgentFetcher,
    sink,
    scanner=None,
    scheduler=None,
    discovery_timeout: float = DEFAULT_SCAN_TIMEOUT,
    cors_origins: Optional[List[str]] = None
) -> FastAPI:
    """
    Build the hub application.

    The scheduler (when given) is started with the app and stopped, together
    with the sink, when the app shuts down.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler is not None:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                await run_in_threadpool(scheduler.stop, SCHEDULER_STOP_TIMEOUT)
            sink.close()

    app = FastAPI(title="Sentinel Hub", description="Sentinel fleet registry and metrics collection", lifespan=lifespan)
    app.state.directory = directory
    app.state.fetcher = fetcher
    app.state.sink = sink
    app.state.scanner = scanner
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ['*'],
        allow_methods=['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS'],
        allow_headers=['Content-Type', 'Authorization'],
    )
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)

    @app.get('/api/agents', response_model=List[AgentRecord])
    def list_agents(directory: AgentDirectory = Depends(get_directory)):
        """List all registered agents"""
        return directory.list()

    @app.post('/api/agents', response_model=AgentRecord, status_code=201)
    def add_agent(
        payload: AgentCreateRequest,
        directory: AgentDirectory = Depends(get_directory),
        fetcher: AgentFetcher = Depends(get_fetcher)
    ):
        """Register an agent by address; its hostname is read from the agent itself"""
        try:
            hostname = fetcher.resolve_hostname(payload.ip_address, payload.port)
        except AgentUnreachableError as e:
            logger.warning("Cannot reach agent", extra={'context': {'error': str(e)}})
            raise HTTPException(status_code=503, detail="Cannot reach agent")
        except InvalidAgentResponseError as e:
            logger.warning("Invalid agent response", extra={'context': {'error': str(e)}})
            raise HTTPException(status_code=502, detail="Invalid agent response")

        try:
            return directory.add(hostname=hostname, ip_address=payload.ip_address, port=payload.port)
        except DirectoryPersistenceError:
            raise HTTPException(status_code=500, detail="Failed to add agent")

    # Declared before /api/agents/{agent_id} so 'discover' is not taken as an id.
    @app.get('/api/agents/discover', response_model=List[DiscoveredAgent])
    def discover_agents(request: Request, directory: AgentDirectory = Depends(get_directory)):
        """Scan the network and return agents that are not registered yet"""
        scanner = request.app.state.scanner
        if scanner is None:
            raise HTTPException(status_code=503, detail="Discovery is not available")

        try:
            discovered = scanner.scan(discovery_timeout)
        except DiscoveryError as e:
            logger.error("Discovery failed", extra={'context': {'error': str(e)}})
            raise HTTPException(status_code=500, detail="Discovery failed")

        candidates = reconcile(discovered, directory.list())
        logger.info(
            "Discovery finished",
            extra={'context': {'found': len(discovered), 'new': len(candidates)}}
        )
        return candidates

    @app.get('/api/agents/{agent_id}', response_model=AgentRecord)
    def get_agent(agent_id: str, directory: AgentDirectory = Depends(get_directory)):
        """Get a single registered agent"""
        return _lookup(directory, agent_id)

    @app.delete('/api/agents/{agent_id}', response_model=DeleteResponse)
    def remove_agent(agent_id: str, directory: AgentDirectory = Depends(get_directory)):
        """Remove an agent from the registry"""
        _lookup(directory, agent_id)
        try:
            directory.remove(agent_id)
        except DirectoryPersistenceError:
            raise HTTPException(status_code=500, detail="Failed to remove agent")
        return DeleteResponse()

    @app.get('/api/metrics/{agent_id}')
    def proxy_metrics(
        agent_id: str,
        directory: AgentDirectory = Depends(get_directory),
        fetcher: AgentFetcher = Depends(get_fetcher)
    ):
        """Fetch an agent's current metrics and pass them through unchanged"""
        record = _lookup(directory, agent_id)

        try:
            result = fetcher.poll(record)
        except DirectoryPersistenceError:
            raise HTTPException(status_code=500, detail="Failed to update agent status")

        if not result.reachable:
            raise HTTPException(status_code=503, detail="Agent unreachable")

        return Response(content=result.body, status_code=result.status_code, media_type='application/json')

    @app.get('/api/history/{agent_id}/{measurement}')
    def history(
        agent_id: str,
        measurement: str,
        duration: str = Query(default='1h', description="Window such as 15m, 1h or 24h"),
        directory: AgentDirectory = Depends(get_directory)
    ):
        """Get stored samples of one measurement for an agent"""
        try:
            window = parse_duration(duration)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid duration format")

        _lookup(directory, agent_id)

        try:
            records = sink.query(agent_id, measurement, window)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except SinkError as e:
            logger.error("Failed to query metrics", extra={'context': {'agent_id': agent_id, 'error': str(e)}})
            raise HTTPException(status_code=500, detail="Failed to query metrics")

        return records

    @app.get('/api/health', response_model=HealthResponse)
    def health():
        """Health check endpoint"""
        return HealthResponse(status='ok', timestamp=utc_now())

    return app


def run_server(app: FastAPI, host: str = '0.0.0.0', port: int = 8080):
    """Run the hub server"""
    uvicorn.run(app, host=host, port=port, log_config=None)
