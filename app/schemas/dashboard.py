from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime

from app.schemas.ticket import WirePriority, WireStatus


class MonthlyPoint(BaseModel):
    """Single month in the trailing income/expense series."""
    month: str  # "Jan"
    year: int
    income: float = 0.0
    expenses: float = 0.0
    net: float = 0.0


class MonthlyIncome(BaseModel):
    """Monthly income card: current month totals plus change vs. the prior month."""
    current_income: float = 0.0
    current_expenses: float = 0.0
    current_net: float = 0.0
    monthly_change: float = 0.0
    monthly_data: List[MonthlyPoint] = []


class AttentionTicket(BaseModel):
    """Open ticket row enriched with the owning property's address."""
    id: int
    title: str
    description: str
    priority: WirePriority
    status: WireStatus
    property_id: int
    property_address: str
    created_at: datetime


class TicketStats(BaseModel):
    open_tickets: List[AttentionTicket] = []
    total_count: int = 0


class LeaseRenewal(BaseModel):
    id: int
    tenant_name: str
    start_date: datetime
    end_date: datetime
    monthly_rent: float = 0.0
    is_active: bool = True
    property_id: int
    property_address: str
    months_until_renewal: int = 0


class LeaseStats(BaseModel):
    upcoming_renewals: List[LeaseRenewal] = []
    total_count: int = 0
    horizon_days: int = 0


class OccupancyStats(BaseModel):
    occupied_properties: int = 0
    total_properties: int = 0
    occupancy_rate_pct: float = 0.0


class DashboardStats(BaseModel):
    """Full dashboard response. Derived on demand, never stored."""
    generated_at: datetime
    total_properties: int = 0
    occupancy: OccupancyStats = OccupancyStats()
    monthly_income: MonthlyIncome = MonthlyIncome()
    ticket_stats: TicketStats = TicketStats()
    lease_stats: LeaseStats = LeaseStats()
    urgent_lease_stats: Optional[LeaseStats] = None
