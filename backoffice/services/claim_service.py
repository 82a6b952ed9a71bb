"""Warranty and service claims.

Every state change on a claim appends a ``ClaimEvent`` row, which is the
claim's timeline as shown to staff.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice.models import Claim, ClaimEvent, ClaimPriority, ClaimStatus, Customer, Employee
from backoffice.services.installment_math import add_months
from backoffice.services.stock_service import get_product

logger = logging.getLogger(__name__)

PENDING_STATUSES = frozenset(
    {
        ClaimStatus.SUBMITTED,
        ClaimStatus.UNDER_REVIEW,
        ClaimStatus.APPROVED,
        ClaimStatus.IN_PROGRESS,
        ClaimStatus.WAITING_PARTS,
    }
)
CLOSED_STATUSES = frozenset({ClaimStatus.COMPLETED, ClaimStatus.CANCELLED})
HIGH_PRIORITIES = frozenset({ClaimPriority.URGENT, ClaimPriority.HIGH})

# Days a claim may stay open before it counts as overdue.
OVERDUE_THRESHOLD_DAYS = {
    ClaimPriority.URGENT: 1,
    ClaimPriority.HIGH: 3,
    ClaimPriority.MEDIUM: 7,
    ClaimPriority.LOW: 14,
}

EVENT_CREATED = 'created'
EVENT_STATUS_CHANGED = 'status_changed'
EVENT_ASSIGNED = 'assigned'
EVENT_COMMENT = 'comment_added'
EVENT_COMPLETED = 'completed'


@dataclass(frozen=True)
class WarrantyStatus:
    under_warranty: bool
    warranty_end_date: date
    remaining_days: int


def warranty_status(purchase_date: date, warranty_months: int, *, today: date) -> WarrantyStatus:
    end = add_months(purchase_date, warranty_months)
    return WarrantyStatus(
        under_warranty=today <= end,
        warranty_end_date=end,
        remaining_days=max(0, (end - today).days),
    )


def is_overdue(claim: Claim, *, today: date) -> bool:
    if claim.status in CLOSED_STATUSES:
        return False
    return (today - claim.claim_date).days > OVERDUE_THRESHOLD_DAYS[claim.priority]


def get_claim(db: Session, claim_id: int) -> Claim:
    claim = db.execute(select(Claim).where(Claim.id == claim_id)).scalar_one_or_none()
    if not claim:
        raise ValueError('Claim not found')
    return claim


def _add_event(db: Session, claim: Claim, *, action: str, description: str, actor_user_id: int | None) -> None:
    db.add(ClaimEvent(claim_id=claim.id, action=action, description=description, actor_user_id=actor_user_id))


def _next_claim_number(db: Session, *, today: date) -> str:
    prefix = f'CLM-{today.year}-'
    count = db.execute(select(func.count(Claim.id)).where(Claim.claim_number.like(f'{prefix}%'))).scalar_one()
    return f'{prefix}{count + 1:03d}'


def _parse_status(value: str) -> ClaimStatus:
    try:
        return ClaimStatus(value)
    except ValueError as exc:
        raise ValueError('Invalid claim status') from exc


def _parse_priority(value: str) -> ClaimPriority:
    try:
        return ClaimPriority(value)
    except ValueError as exc:
        raise ValueError('Invalid claim priority') from exc


def create_claim(
    db: Session,
    *,
    branch_id: int,
    customer_id: int,
    product_id: int,
    description: str,
    claim_type: str = 'warranty',
    priority: str = ClaimPriority.MEDIUM.value,
    purchase_date: date | None = None,
    serial_number_id: int | None = None,
    estimated_cost: Decimal | None = None,
    actor_user_id: int | None,
    today: date,
) -> Claim:
    description = (description or '').strip()
    if not description:
        raise ValueError('Issue description is required')
    customer = db.execute(select(Customer).where(Customer.id == customer_id)).scalar_one_or_none()
    if not customer:
        raise ValueError('Customer or product not found')
    try:
        get_product(db, product_id)
    except ValueError as exc:
        raise ValueError('Customer or product not found') from exc

    claim = Claim(
        claim_number=_next_claim_number(db, today=today),
        branch_id=branch_id,
        customer_id=customer.id,
        product_id=product_id,
        serial_number_id=serial_number_id,
        claim_type=claim_type,
        description=description,
        status=ClaimStatus.SUBMITTED,
        priority=_parse_priority(priority),
        purchase_date=purchase_date,
        claim_date=today,
        estimated_cost=estimated_cost,
    )
    db.add(claim)
    db.flush()
    _add_event(db, claim, action=EVENT_CREATED, description='Claim submitted', actor_user_id=actor_user_id)
    db.flush()
    logger.info('Created claim %s for customer %s', claim.claim_number, customer.id)
    return claim


def update_claim(
    db: Session,
    *,
    claim_id: int,
    status: str | None = None,
    priority: str | None = None,
    assigned_to_employee_id: int | None = None,
    estimated_cost: Decimal | None = None,
    actor_user_id: int | None,
) -> Claim:
    claim = get_claim(db, claim_id)

    if status:
        new_status = _parse_status(status)
        if new_status != claim.status:
            if claim.status in CLOSED_STATUSES:
                raise ValueError(f'Claim is already {claim.status.value}')
            claim.status = new_status
            _add_event(
                db,
                claim,
                action=EVENT_STATUS_CHANGED,
                description=f'Status changed to {new_status.value}',
                actor_user_id=actor_user_id,
            )

    if priority:
        claim.priority = _parse_priority(priority)

    if assigned_to_employee_id and assigned_to_employee_id != claim.assigned_to_employee_id:
        employee = db.execute(select(Employee).where(Employee.id == assigned_to_employee_id)).scalar_one_or_none()
        if not employee:
            raise ValueError('Employee not found')
        claim.assigned_to_employee_id = employee.id
        _add_event(
            db,
            claim,
            action=EVENT_ASSIGNED,
            description=f'Assigned to {employee.first_name} {employee.last_name}',
            actor_user_id=actor_user_id,
        )

    if estimated_cost is not None:
        claim.estimated_cost = estimated_cost

    db.flush()
    return claim


def resolve_claim(
    db: Session,
    *,
    claim_id: int,
    resolution: str,
    actual_cost: Decimal | None = None,
    actor_user_id: int | None,
) -> Claim:
    claim = get_claim(db, claim_id)
    if claim.status in CLOSED_STATUSES:
        raise ValueError(f'Claim is already {claim.status.value}')
    resolution = (resolution or '').strip()
    if not resolution:
        raise ValueError('Resolution is required')
    claim.status = ClaimStatus.COMPLETED
    claim.resolution = resolution
    claim.actual_cost = actual_cost
    claim.completed_at = datetime.now(timezone.utc)
    _add_event(db, claim, action=EVENT_COMPLETED, description=f'Resolved: {resolution}', actor_user_id=actor_user_id)
    db.flush()
    return claim


def add_comment(db: Session, *, claim_id: int, comment: str, actor_user_id: int | None) -> ClaimEvent:
    claim = get_claim(db, claim_id)
    comment = (comment or '').strip()
    if not comment:
        raise ValueError('Comment cannot be empty')
    event = ClaimEvent(claim_id=claim.id, action=EVENT_COMMENT, description=comment, actor_user_id=actor_user_id)
    db.add(event)
    db.flush()
    return event


def claim_timeline(db: Session, *, claim_id: int) -> list[ClaimEvent]:
    return list(
        db.execute(
            select(ClaimEvent).where(ClaimEvent.claim_id == claim_id).order_by(ClaimEvent.created_at.asc(), ClaimEvent.id.asc())
        )
        .scalars()
        .all()
    )


def list_claims(
    db: Session,
    *,
    branch_id: int | None,
    status: str | None = None,
    priority: str | None = None,
    customer_id: int | None = None,
    query: str | None = None,
) -> list[Claim]:
    stmt = select(Claim).order_by(Claim.claim_date.desc(), Claim.id.desc())
    if branch_id:
        stmt = stmt.where(Claim.branch_id == branch_id)
    if status:
        stmt = stmt.where(Claim.status == _parse_status(status))
    if priority:
        stmt = stmt.where(Claim.priority == _parse_priority(priority))
    if customer_id:
        stmt = stmt.where(Claim.customer_id == customer_id)
    if query and query.strip():
        term = f'%{query.strip().lower()}%'
        stmt = stmt.where(func.lower(Claim.claim_number).like(term) | func.lower(Claim.description).like(term))
    return list(db.execute(stmt).scalars().all())


def pending_claims(claims: list[Claim]) -> list[Claim]:
    return [claim for claim in claims if claim.status in PENDING_STATUSES]


def high_priority_claims(claims: list[Claim]) -> list[Claim]:
    return [claim for claim in claims if claim.priority in HIGH_PRIORITIES]


def overdue_claims(claims: list[Claim], *, today: date) -> list[Claim]:
    return [claim for claim in claims if is_overdue(claim, today=today)]


def claim_view(claim: Claim, *, today: date) -> dict:
    return {
        'id': claim.id,
        'claim_number': claim.claim_number,
        'branch_id': claim.branch_id,
        'customer_id': claim.customer_id,
        'product_id': claim.product_id,
        'claim_type': claim.claim_type,
        'description': claim.description,
        'status': claim.status.value,
        'priority': claim.priority.value,
        'claim_date': claim.claim_date,
        'purchase_date': claim.purchase_date,
        'assigned_to_employee_id': claim.assigned_to_employee_id,
        'estimated_cost': claim.estimated_cost,
        'actual_cost': claim.actual_cost,
        'resolution': claim.resolution,
        'overdue': is_overdue(claim, today=today),
    }
