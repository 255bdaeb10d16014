"""
Agent HTTP server exposing /metrics and /health.
"""
import logging
from datetime import datetime, timezone

import psutil
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from sentinel_agent.collectors import SystemMetrics

logger = logging.getLogger(__name__)


def create_app(collector: SystemMetrics) -> FastAPI:
    app = FastAPI(title="Sentinel Agent", description="Point-in-time system metrics")
    app.add_middleware(CORSMiddleware, allow_origins=['*'], allow_methods=['GET'])

    @app.get('/metrics')
    def metrics():
        """Current system metrics snapshot"""
        try:
            return collector.collect().to_dict()
        except (psutil.Error, OSError) as e:
            logger.error("Error collecting metrics", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to collect metrics: {e}")

    @app.get('/health')
    def health():
        return {'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat()}

    return app


def run_server(app: FastAPI, host: str = '0.0.0.0', port: int = 9100):
    """Run the agent server"""
    uvicorn.run(app, host=host, port=port, log_config=None)
