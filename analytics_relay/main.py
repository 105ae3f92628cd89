from fastapi import FastAPI

from analytics_relay.api.v1.router import router as v1_router
from analytics_relay.core.telemetry import setup_telemetry

app = FastAPI(title="Analytics Outbox API", version="0.1.0")

setup_telemetry(app)
app.include_router(v1_router)
