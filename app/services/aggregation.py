"""
Dashboard aggregation.

Pure projections from property snapshots (leases, cash flows, tickets) to the
statistics the dashboard cards show. Nothing here reads the clock: every function
takes `now`, so identical inputs always give identical output.
"""
import calendar
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from app.schemas.dashboard import (
    AttentionTicket,
    DashboardStats,
    LeaseRenewal,
    LeaseStats,
    MonthlyIncome,
    MonthlyPoint,
    OccupancyStats,
    TicketStats,
)
from app.schemas.property import CashFlowOut, CashFlowType, LeaseOut, PropertySnapshot
from app.schemas.ticket import TERMINAL_STATUSES, UNKNOWN_ADDRESS, TicketRecord


class AggregationConfig(BaseModel):
    trailing_months: int = 6
    urgent_renewal_days: int = 90
    renewal_horizon_days: int = 365

    model_config = ConfigDict(frozen=True)


# --- Calendar helpers ---

def month_start(dt: datetime) -> datetime:
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def add_months(dt: datetime, months: int) -> datetime:
    """Shift by whole calendar months, clamping the day (Jan 31 + 1 month -> Feb 28/29)."""
    index = dt.year * 12 + (dt.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def months_until_renewal(end_date: datetime, now: datetime) -> int:
    """
    Whole calendar months between now and end_date, truncated toward zero.

    Only used for ordering and colouring renewals; inclusion in a renewal
    set is decided by day horizons.
    """
    sign = 1 if end_date >= now else -1
    earlier, later = (now, end_date) if sign > 0 else (end_date, now)
    months = (later.year - earlier.year) * 12 + (later.month - earlier.month)
    if months and add_months(earlier, months) > later:
        months -= 1
    return sign * months


def _round(value: float) -> float:
    return round(float(value), 2)


# --- Monthly income ---

def _month_key(dt: datetime) -> Tuple[int, int]:
    return dt.year, dt.month


def monthly_series(cash_flows: Iterable[CashFlowOut], now: datetime, months: int = 6) -> List[MonthlyPoint]:
    """Trailing series of `months` calendar months ending with the month containing now."""
    totals: Dict[Tuple[int, int], Dict[CashFlowType, float]] = defaultdict(lambda: defaultdict(float))
    for cf in cash_flows:
        totals[_month_key(cf.date)][cf.type] += cf.amount

    current = month_start(now)
    points: List[MonthlyPoint] = []
    for offset in range(months - 1, -1, -1):
        start = add_months(current, -offset)
        bucket = totals.get(_month_key(start), {})
        income = bucket.get(CashFlowType.INCOME, 0.0)
        expenses = bucket.get(CashFlowType.EXPENSE, 0.0)
        points.append(
            MonthlyPoint(
                month=start.strftime("%b"),
                year=start.year,
                income=_round(income),
                expenses=_round(expenses),
                net=_round(income - expenses),
            )
        )
    return points


def percent_change(current: float, prior: float) -> float:
    """Change vs. the prior value; 0 when the prior value is 0. Negative priors use |prior|."""
    if prior == 0:
        return 0.0
    return _round((current - prior) / abs(prior) * 100)


def monthly_income(cash_flows: Iterable[CashFlowOut], now: datetime, months: int = 6) -> MonthlyIncome:
    # the change needs the prior month even when the chart shows a single month
    series = monthly_series(cash_flows, now, max(months, 2))
    current, prior = series[-1], series[-2]
    return MonthlyIncome(
        current_income=current.income,
        current_expenses=current.expenses,
        current_net=current.net,
        monthly_change=percent_change(current.net, prior.net),
        monthly_data=series[-months:] if months > 0 else [],
    )


# --- Tickets ---

def needs_attention(ticket: TicketRecord) -> bool:
    return ticket.status not in TERMINAL_STATUSES


def attention_tickets(tickets: Iterable[TicketRecord], addresses: Optional[Dict[int, str]] = None) -> TicketStats:
    """Open tickets (anything not resolved or closed), newest first, with the property address filled in."""
    addresses = addresses or {}
    rows = [
        AttentionTicket(
            id=t.id,
            title=t.title,
            description=t.description,
            priority=t.priority,
            status=t.status,
            property_id=t.property_id,
            property_address=addresses.get(t.property_id) or t.property_address or UNKNOWN_ADDRESS,
            created_at=t.created_at,
        )
        for t in tickets
        if needs_attention(t)
    ]
    rows.sort(key=lambda r: (r.created_at, r.id), reverse=True)
    return TicketStats(open_tickets=rows, total_count=len(rows))


# --- Leases ---

def upcoming_renewals(
    properties: Sequence[PropertySnapshot], now: datetime, horizon_days: int
) -> LeaseStats:
    """
    Active leases ending on or before now + horizon_days, soonest first.

    Active leases whose end date has already passed are kept: they are the
    most overdue renewals.
    """
    horizon_end = now + timedelta(days=horizon_days)
    rows: List[LeaseRenewal] = []
    for prop in properties:
        for lease in prop.leases:
            if not lease.is_active or lease.end_date > horizon_end:
                continue
            rows.append(
                LeaseRenewal(
                    id=lease.id,
                    tenant_name=lease.tenant_name,
                    start_date=lease.start_date,
                    end_date=lease.end_date,
                    monthly_rent=lease.monthly_rent,
                    is_active=lease.is_active,
                    property_id=prop.id,
                    property_address=prop.address,
                    months_until_renewal=months_until_renewal(lease.end_date, now),
                )
            )
    rows.sort(key=lambda r: (r.end_date, r.id))
    return LeaseStats(upcoming_renewals=rows, total_count=len(rows), horizon_days=horizon_days)


def _lease_covers(lease: LeaseOut, now: datetime) -> bool:
    return lease.is_active and lease.start_date <= now <= lease.end_date


def occupancy(properties: Sequence[PropertySnapshot], now: datetime) -> OccupancyStats:
    total = len(properties)
    occupied = sum(1 for p in properties if any(_lease_covers(l, now) for l in p.leases))
    rate = (occupied / total * 100) if total > 0 else 0.0
    return OccupancyStats(
        occupied_properties=occupied,
        total_properties=total,
        occupancy_rate_pct=round(rate, 1),
    )


def dashboard_stats(
    properties: Sequence[PropertySnapshot],
    now: datetime,
    config: Optional[AggregationConfig] = None,
) -> DashboardStats:
    """Everything the dashboard shows, recomputed from scratch."""
    config = config or AggregationConfig()
    cash_flows = [cf for p in properties for cf in p.cash_flows]
    addresses = {p.id: p.address for p in properties}
    tickets = [t for p in properties for t in p.tickets]

    return DashboardStats(
        generated_at=now,
        total_properties=len(properties),
        occupancy=occupancy(properties, now),
        monthly_income=monthly_income(cash_flows, now, config.trailing_months),
        ticket_stats=attention_tickets(tickets, addresses),
        lease_stats=upcoming_renewals(properties, now, config.renewal_horizon_days),
        urgent_lease_stats=upcoming_renewals(properties, now, config.urgent_renewal_days),
    )
