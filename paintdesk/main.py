# paintdesk/main.py
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import config
from .errors import register_exception_handlers
from .logging_config import RequestIDMiddleware, setup_logging
from .routers import (
    admin,
    affiliate,
    billing,
    companies,
    crew,
    customers,
    estimates,
    health,
    inventory,
    invoices,
    job_templates,
    jobs,
    message_templates,
    public,
    reminders,
    webhooks,
)

setup_logging(config.ENV, config.LOG_LEVEL)
log = logging.getLogger(__name__)

app = FastAPI(
    title="PaintDesk API",
    version="1.0.0",
    docs_url=None if config.is_production else "/docs",
    redoc_url=None,
)

# ──────────────────────────────────────────────────────────────────────────────
# Middleware
# ──────────────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Retry-After"],
)
app.add_middleware(RequestIDMiddleware)

register_exception_handlers(app)

# ──────────────────────────────────────────────────────────────────────────────
# Routers
# ──────────────────────────────────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(companies.router)
app.include_router(crew.router)
app.include_router(jobs.router)
app.include_router(job_templates.router)
app.include_router(customers.router)
app.include_router(estimates.router)
app.include_router(invoices.router)
app.include_router(public.router)
app.include_router(billing.router)
app.include_router(affiliate.router)
app.include_router(admin.router)
app.include_router(message_templates.router)
app.include_router(inventory.router)
app.include_router(reminders.router)
app.include_router(webhooks.router)

log.info("PaintDesk API started (env=%s, stripe=%s)", config.ENV, config.stripe_configured)

# ──────────────────────────────────────────────────────────────────────────────
# Local dev entrypoint
# ──────────────────────────────────────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "paintdesk.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        reload=config.is_development,
    )
