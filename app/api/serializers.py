"""ORM -> schema conversion shared by the routes and the triage worker."""
from app.models.cash_flow import CashFlow
from app.models.lease import Lease
from app.models.property import Property
from app.models.ticket import Ticket
from app.schemas.property import CashFlowOut, LeaseOut, PropertySnapshot
from app.schemas.ticket import UNKNOWN_ADDRESS, TicketMetadata, TicketRecord


def ticket_to_record(ticket: Ticket) -> TicketRecord:
    return TicketRecord(
        id=ticket.id,
        title=ticket.title,
        description=ticket.description,
        priority=ticket.priority,
        status=ticket.status,
        property_id=ticket.property_id,
        property_address=ticket.property.address if ticket.property else UNKNOWN_ADDRESS,
        metadata=TicketMetadata.model_validate(ticket.details) if ticket.details else None,
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
    )


def lease_to_out(lease: Lease) -> LeaseOut:
    return LeaseOut(
        id=lease.id,
        property_id=lease.property_id,
        tenant_name=lease.tenant_name,
        start_date=lease.start_date,
        end_date=lease.end_date,
        monthly_rent=float(lease.monthly_rent or 0),
        is_active=lease.is_active,
    )


def cash_flow_to_out(cf: CashFlow) -> CashFlowOut:
    return CashFlowOut(
        id=cf.id,
        property_id=cf.property_id,
        type=cf.type,
        amount=float(cf.amount or 0),
        date=cf.date,
        description=cf.description,
    )


def property_to_snapshot(prop: Property) -> PropertySnapshot:
    return PropertySnapshot(
        id=prop.id,
        name=prop.name,
        address=prop.address,
        leases=[lease_to_out(l) for l in prop.leases],
        cash_flows=[cash_flow_to_out(cf) for cf in prop.cash_flows],
        tickets=[ticket_to_record(t) for t in prop.tickets],
    )
