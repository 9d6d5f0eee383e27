"""
Dashboard endpoints.

/dashboard/source returns the raw property snapshots the client aggregates
itself; /dashboard/stats runs the same aggregation server-side.
"""
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, selectinload

from app.api.deps import get_db
from app.api.serializers import property_to_snapshot
from app.core.config import settings
from app.models.property import Property
from app.models.ticket import Ticket
from app.schemas.dashboard import DashboardStats
from app.schemas.property import PropertySnapshot
from app.schemas.ticket import as_utc
from app.services.aggregation import AggregationConfig, dashboard_stats

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


def _load_snapshots(db: Session) -> List[PropertySnapshot]:
    properties = (
        db.query(Property)
        .options(
            selectinload(Property.leases),
            selectinload(Property.cash_flows),
            selectinload(Property.tickets).joinedload(Ticket.property),
        )
        .order_by(Property.id)
        .all()
    )
    return [property_to_snapshot(p) for p in properties]


@router.get("/source", response_model=List[PropertySnapshot])
def get_dashboard_source(db: Session = Depends(get_db)):
    return _load_snapshots(db)


@router.get("/stats", response_model=DashboardStats)
def get_dashboard_stats(
    db: Session = Depends(get_db),
    now: Optional[datetime] = Query(None, description="Reference time (ISO 8601); defaults to the current UTC time"),
):
    config = AggregationConfig(
        trailing_months=settings.TRAILING_MONTHS,
        urgent_renewal_days=settings.URGENT_RENEWAL_DAYS,
        renewal_horizon_days=settings.RENEWAL_HORIZON_DAYS,
    )
    reference = as_utc(now) if now else datetime.now(timezone.utc)
    return dashboard_stats(_load_snapshots(db), reference, config)
