import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from app.core.config import settings
from app.core.database import Base, SessionLocal, engine
from app.models.cash_flow import CashFlow  # noqa: F401  (register tables)
from app.models.lease import Lease  # noqa: F401
from app.models.property import Property  # noqa: F401
from app.models.ticket import Ticket  # noqa: F401
from app.api.routes.tickets import router as tickets_router
from app.api.routes.dashboard import router as dashboard_router


logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# 1) Create tables (no migrations for the dashboard schema)
Base.metadata.create_all(bind=engine)

# 2) Create the app
app = FastAPI(title="Property Dashboard Backend")

# 3) Add CORS Middleware BEFORE routes
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 4) Include routers AFTER app is created
app.include_router(tickets_router)
app.include_router(dashboard_router)


# 5) Health check endpoints
@app.get("/health")
def health():
    return {"ok": True, "service": "backend"}


@app.get("/db-health")
def db_health():
    db = SessionLocal()
    try:
        db.execute(text("select 1"))
        return {"ok": True, "db": "connected"}
    finally:
        db.close()
