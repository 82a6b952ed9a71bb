"""Chart of accounts and the double-entry journal.

Manual entries start as drafts and only count once posted. Business events
(sales, new installment contracts, installment payments) post approved entries
straight away, at most once per source document.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice.errors import AccountingIntegrationError
from backoffice.models import (
    Account,
    AccountType,
    InstallmentContract,
    JournalEntry,
    JournalEntryLine,
    JournalEntryStatus,
    Product,
    SalesTransaction,
    SalesTransactionItem,
)
from backoffice.services.installment_math import ZERO, round_money

logger = logging.getLogger(__name__)

ACCOUNT_CATEGORIES = {
    AccountType.ASSET: {'current_asset', 'fixed_asset', 'intangible_asset'},
    AccountType.LIABILITY: {'current_liability', 'long_term_liability'},
    AccountType.EQUITY: {'owner_equity', 'retained_earnings'},
    AccountType.REVENUE: {'sales_revenue', 'other_revenue'},
    AccountType.EXPENSE: {'cost_of_goods_sold', 'operating_expense', 'other_expense'},
}
DEBIT_NORMAL = {AccountType.ASSET, AccountType.EXPENSE}
BALANCE_TOLERANCE = Decimal('0.01')

CASH = '1100'
BANK = '1110'
TRANSFER_CLEARING = '1120'
INSTALLMENT_RECEIVABLE = '1300'
INVENTORY = '1400'
OUTPUT_VAT = '2300'
OWNER_EQUITY = '3100'
SALES_REVENUE = '4100'
INTEREST_REVENUE = '4200'
LATE_FEE_REVENUE = '4300'
COST_OF_GOODS_SOLD = '5100'
DISCOUNT_EXPENSE = '6200'

DEFAULT_ACCOUNTS = [
    (CASH, 'Cash on hand', AccountType.ASSET, 'current_asset'),
    (BANK, 'Bank deposits', AccountType.ASSET, 'current_asset'),
    (TRANSFER_CLEARING, 'Transfer clearing', AccountType.ASSET, 'current_asset'),
    (INSTALLMENT_RECEIVABLE, 'Installment receivable', AccountType.ASSET, 'current_asset'),
    (INVENTORY, 'Inventory', AccountType.ASSET, 'current_asset'),
    (OUTPUT_VAT, 'Output VAT', AccountType.LIABILITY, 'current_liability'),
    (OWNER_EQUITY, 'Owner equity', AccountType.EQUITY, 'owner_equity'),
    (SALES_REVENUE, 'Sales revenue', AccountType.REVENUE, 'sales_revenue'),
    (INTEREST_REVENUE, 'Installment interest revenue', AccountType.REVENUE, 'other_revenue'),
    (LATE_FEE_REVENUE, 'Late fee revenue', AccountType.REVENUE, 'other_revenue'),
    (COST_OF_GOODS_SOLD, 'Cost of goods sold', AccountType.EXPENSE, 'cost_of_goods_sold'),
    (DISCOUNT_EXPENSE, 'Sales discounts', AccountType.EXPENSE, 'operating_expense'),
]

# Where the money lands for each payment method.
SETTLEMENT_ACCOUNTS = {
    'cash': CASH,
    'card': BANK,
    'cheque': BANK,
    'transfer': TRANSFER_CLEARING,
    'qr': TRANSFER_CLEARING,
}

JOURNAL_SYNC_OPERATION = 'journal-entry-sync'

SOURCE_SALE = 'sale'
SOURCE_CONTRACT = 'installment_contract'
SOURCE_INSTALLMENT_PAYMENT = 'installment_payment'


@dataclass
class EntryLine:
    account_code: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Chart of accounts


def seed_chart_of_accounts(db: Session) -> int:
    existing = set(db.execute(select(Account.code)).scalars().all())
    created = 0
    for code, name, account_type, category in DEFAULT_ACCOUNTS:
        if code in existing:
            continue
        db.add(Account(code=code, name=name, account_type=account_type, category=category, active=True))
        created += 1
    db.flush()
    if created:
        logger.info('Seeded %s accounts into the chart of accounts', created)
    return created


def list_accounts(db: Session, *, account_type: str | None = None, active_only: bool = True) -> list[Account]:
    stmt = select(Account).order_by(Account.code.asc())
    if account_type:
        try:
            stmt = stmt.where(Account.account_type == AccountType(account_type))
        except ValueError as exc:
            raise ValueError('Invalid account type') from exc
    if active_only:
        stmt = stmt.where(Account.active.is_(True))
    return list(db.execute(stmt).scalars().all())


def _account_by_code(db: Session, code: str) -> Account | None:
    return db.execute(select(Account).where(Account.code == code)).scalar_one_or_none()


def create_account(
    db: Session,
    *,
    code: str,
    name: str,
    account_type: str,
    category: str,
    parent_id: int | None = None,
    description: str | None = None,
) -> Account:
    code = (code or '').strip()
    if len(code) != 4 or not code.isdigit():
        raise ValueError('Account code must be four digits')
    if not (name or '').strip():
        raise ValueError('Account name is required')
    try:
        kind = AccountType(account_type)
    except ValueError as exc:
        raise ValueError('Invalid account type') from exc
    if category not in ACCOUNT_CATEGORIES[kind]:
        raise ValueError(f'Category {category} does not belong to {kind.value} accounts')
    if _account_by_code(db, code):
        raise ValueError('Account code already exists')
    if parent_id is not None:
        parent = db.execute(select(Account).where(Account.id == parent_id)).scalar_one_or_none()
        if not parent or parent.account_type != kind:
            raise ValueError('Parent account must exist and have the same type')

    account = Account(
        code=code,
        name=name.strip(),
        account_type=kind,
        category=category,
        parent_id=parent_id,
        description=description,
        active=True,
    )
    db.add(account)
    db.flush()
    return account


def account_view(account: Account) -> dict:
    return {
        'id': account.id,
        'code': account.code,
        'name': account.name,
        'account_type': account.account_type.value,
        'category': account.category,
        'parent_id': account.parent_id,
        'description': account.description,
        'active': account.active,
    }


# Journal entries


def validate_lines(lines: list[EntryLine]) -> tuple[Decimal, Decimal]:
    """Return (total_debit, total_credit) for a balanced set of lines."""
    if len(lines) < 2:
        raise ValueError('A journal entry needs at least two lines')
    for line in lines:
        if line.debit < 0 or line.credit < 0:
            raise ValueError('Line amounts cannot be negative')
        if (line.debit > 0) == (line.credit > 0):
            raise ValueError('Each line must be either a debit or a credit')
    total_debit = round_money(sum((line.debit for line in lines), ZERO))
    total_credit = round_money(sum((line.credit for line in lines), ZERO))
    if abs(total_debit - total_credit) >= BALANCE_TOLERANCE:
        raise ValueError(f'Total debits ({total_debit}) must equal total credits ({total_credit})')
    return total_debit, total_credit


def next_entry_number(db: Session, *, entry_date: date) -> str:
    prefix = f'JE-{entry_date:%Y}-'
    count = db.execute(
        select(func.count(JournalEntry.id)).where(JournalEntry.entry_number.like(f'{prefix}%'))
    ).scalar_one()
    return f'{prefix}{count + 1:05d}'


def _resolve_accounts(db: Session, lines: list[EntryLine]) -> dict[str, Account]:
    codes = {line.account_code for line in lines}
    accounts = {
        account.code: account
        for account in db.execute(select(Account).where(Account.code.in_(sorted(codes)))).scalars().all()
    }
    missing = sorted(code for code in codes if code not in accounts or not accounts[code].active)
    if missing:
        raise ValueError(f'Unknown or inactive accounts: {", ".join(missing)}')
    return accounts


def create_journal_entry(
    db: Session,
    *,
    entry_date: date,
    description: str,
    lines: list[EntryLine],
    branch_id: int | None = None,
    reference: str | None = None,
    source_type: str = 'manual',
    source_id: int | None = None,
    status: JournalEntryStatus = JournalEntryStatus.DRAFT,
    created_by_user_id: int | None = None,
) -> JournalEntry:
    if not (description or '').strip():
        raise ValueError('Journal entry description is required')
    total_debit, total_credit = validate_lines(lines)
    accounts = _resolve_accounts(db, lines)

    entry = JournalEntry(
        entry_number=next_entry_number(db, entry_date=entry_date),
        branch_id=branch_id,
        entry_date=entry_date,
        description=description.strip(),
        reference=reference,
        source_type=source_type,
        source_id=source_id,
        total_debit=total_debit,
        total_credit=total_credit,
        status=status,
        created_by_user_id=created_by_user_id,
    )
    if status == JournalEntryStatus.APPROVED:
        entry.approved_by_user_id = created_by_user_id
        entry.approved_at = _utcnow()
    db.add(entry)
    db.flush()

    for line in lines:
        db.add(
            JournalEntryLine(
                entry_id=entry.id,
                account_id=accounts[line.account_code].id,
                description=line.description,
                debit_amount=round_money(line.debit),
                credit_amount=round_money(line.credit),
            )
        )
    db.flush()
    logger.info('Created journal entry %s (%s) for %s', entry.entry_number, entry.status.value, total_debit)
    return entry


def get_journal_entry(db: Session, entry_id: int) -> JournalEntry:
    entry = db.execute(select(JournalEntry).where(JournalEntry.id == entry_id)).scalar_one_or_none()
    if not entry:
        raise ValueError('Journal entry not found')
    return entry


def submit_journal_entry(db: Session, *, entry_id: int) -> JournalEntry:
    entry = get_journal_entry(db, entry_id)
    if entry.status != JournalEntryStatus.DRAFT:
        raise ValueError(f'Cannot submit journal entry with status: {entry.status.value}')
    entry.status = JournalEntryStatus.PENDING
    db.flush()
    return entry


def post_journal_entry(db: Session, *, entry_id: int, approved_by_user_id: int | None = None) -> JournalEntry:
    entry = get_journal_entry(db, entry_id)
    if entry.status not in {JournalEntryStatus.DRAFT, JournalEntryStatus.PENDING}:
        raise ValueError(f'Cannot post journal entry with status: {entry.status.value}')
    entry.status = JournalEntryStatus.APPROVED
    entry.approved_by_user_id = approved_by_user_id
    entry.approved_at = _utcnow()
    db.flush()
    logger.info('Posted journal entry %s', entry.entry_number)
    return entry


def reject_journal_entry(db: Session, *, entry_id: int, reason: str | None = None) -> JournalEntry:
    entry = get_journal_entry(db, entry_id)
    if entry.status not in {JournalEntryStatus.DRAFT, JournalEntryStatus.PENDING}:
        raise ValueError(f'Cannot reject journal entry with status: {entry.status.value}')
    entry.status = JournalEntryStatus.REJECTED
    if reason:
        entry.description = f'{entry.description} (rejected: {reason})'
    db.flush()
    return entry


def entry_lines(db: Session, entry_id: int) -> list[tuple[JournalEntryLine, Account]]:
    return list(
        db.execute(
            select(JournalEntryLine, Account)
            .join(Account, Account.id == JournalEntryLine.account_id)
            .where(JournalEntryLine.entry_id == entry_id)
            .order_by(JournalEntryLine.id.asc())
        ).all()
    )


def reverse_journal_entry(
    db: Session,
    *,
    entry_id: int,
    reversal_date: date,
    reason: str | None = None,
    created_by_user_id: int | None = None,
) -> JournalEntry:
    """Post the mirror image of an approved entry and mark the original reversed."""
    entry = get_journal_entry(db, entry_id)
    if entry.status != JournalEntryStatus.APPROVED:
        raise ValueError('Only approved journal entries can be reversed')

    lines = [
        EntryLine(
            account_code=account.code,
            debit=line.credit_amount,
            credit=line.debit_amount,
            description=line.description,
        )
        for line, account in entry_lines(db, entry.id)
    ]
    description = f'Reversal of {entry.entry_number}'
    if reason:
        description = f'{description}: {reason}'
    reversal = create_journal_entry(
        db,
        entry_date=reversal_date,
        description=description,
        lines=lines,
        branch_id=entry.branch_id,
        reference=entry.entry_number,
        source_type='reversal',
        source_id=entry.id,
        status=JournalEntryStatus.APPROVED,
        created_by_user_id=created_by_user_id,
    )
    reversal.reversal_of_id = entry.id
    entry.status = JournalEntryStatus.REVERSED
    db.flush()
    return reversal


def list_journal_entries(
    db: Session,
    *,
    branch_id: int | None = None,
    status: str | None = None,
    source_type: str | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: int = 200,
) -> list[JournalEntry]:
    stmt = select(JournalEntry).order_by(JournalEntry.entry_date.desc(), JournalEntry.id.desc()).limit(limit)
    if branch_id:
        stmt = stmt.where(JournalEntry.branch_id == branch_id)
    if status:
        try:
            stmt = stmt.where(JournalEntry.status == JournalEntryStatus(status))
        except ValueError as exc:
            raise ValueError('Invalid journal entry status') from exc
    if source_type:
        stmt = stmt.where(JournalEntry.source_type == source_type)
    if start:
        stmt = stmt.where(JournalEntry.entry_date >= start)
    if end:
        stmt = stmt.where(JournalEntry.entry_date <= end)
    return list(db.execute(stmt).scalars().all())


def entry_view(db: Session, entry: JournalEntry, *, with_lines: bool = True) -> dict:
    view = {
        'id': entry.id,
        'entry_number': entry.entry_number,
        'branch_id': entry.branch_id,
        'entry_date': entry.entry_date,
        'description': entry.description,
        'reference': entry.reference,
        'source_type': entry.source_type,
        'source_id': entry.source_id,
        'total_debit': entry.total_debit,
        'total_credit': entry.total_credit,
        'status': entry.status.value,
        'reversal_of_id': entry.reversal_of_id,
        'approved_at': entry.approved_at,
    }
    if with_lines:
        view['lines'] = [
            {
                'account_code': account.code,
                'account_name': account.name,
                'description': line.description,
                'debit': line.debit_amount,
                'credit': line.credit_amount,
            }
            for line, account in entry_lines(db, entry.id)
        ]
    return view


# Balances

# Reversed entries stay on the books; their reversal cancels them out.
BOOKED_STATUSES = (JournalEntryStatus.APPROVED, JournalEntryStatus.REVERSED)


def account_balances(db: Session, *, as_of: date | None = None, branch_id: int | None = None) -> list[dict]:
    filters = [JournalEntry.status.in_(BOOKED_STATUSES)]
    if as_of:
        filters.append(JournalEntry.entry_date <= as_of)
    if branch_id:
        filters.append(JournalEntry.branch_id == branch_id)
    totals = {
        account_id: (Decimal(str(debit)), Decimal(str(credit)))
        for account_id, debit, credit in db.execute(
            select(
                JournalEntryLine.account_id,
                func.coalesce(func.sum(JournalEntryLine.debit_amount), 0),
                func.coalesce(func.sum(JournalEntryLine.credit_amount), 0),
            )
            .join(JournalEntry, JournalEntry.id == JournalEntryLine.entry_id)
            .where(*filters)
            .group_by(JournalEntryLine.account_id)
        ).all()
    }

    rows = []
    for account in list_accounts(db, active_only=False):
        debit, credit = totals.get(account.id, (ZERO, ZERO))
        debit, credit = round_money(debit), round_money(credit)
        balance = debit - credit if account.account_type in DEBIT_NORMAL else credit - debit
        rows.append(
            {
                'account_id': account.id,
                'code': account.code,
                'name': account.name,
                'account_type': account.account_type.value,
                'total_debit': debit,
                'total_credit': credit,
                'balance': balance,
            }
        )
    return rows


def trial_balance(db: Session, *, as_of: date | None = None, branch_id: int | None = None) -> dict:
    rows = [row for row in account_balances(db, as_of=as_of, branch_id=branch_id) if row['total_debit'] or row['total_credit']]
    total_debit = sum((row['total_debit'] for row in rows), ZERO)
    total_credit = sum((row['total_credit'] for row in rows), ZERO)
    return {
        'as_of': as_of,
        'accounts': rows,
        'total_debit': total_debit,
        'total_credit': total_credit,
        'balanced': abs(total_debit - total_credit) < BALANCE_TOLERANCE,
    }


def accounting_summary(db: Session, *, as_of: date | None = None, branch_id: int | None = None) -> dict:
    totals = {kind.value: ZERO for kind in AccountType}
    for row in account_balances(db, as_of=as_of, branch_id=branch_id):
        totals[row['account_type']] += row['balance']
    pending_stmt = select(func.count(JournalEntry.id)).where(
        JournalEntry.status.in_((JournalEntryStatus.DRAFT, JournalEntryStatus.PENDING))
    )
    if branch_id:
        pending_stmt = pending_stmt.where(JournalEntry.branch_id == branch_id)
    pending = db.execute(pending_stmt).scalar_one()
    return {
        'totals_by_type': totals,
        'net_income': totals[AccountType.REVENUE.value] - totals[AccountType.EXPENSE.value],
        'unposted_entries': pending,
    }


# Posting business events


def _existing_posting(db: Session, source_type: str, source_id: int) -> JournalEntry | None:
    return db.execute(
        select(JournalEntry).where(
            JournalEntry.source_type == source_type,
            JournalEntry.source_id == source_id,
            JournalEntry.status.in_(BOOKED_STATUSES),
        )
    ).scalars().first()


def _post_event(
    db: Session,
    *,
    source_type: str,
    source_id: int,
    payload: dict,
    entry_date: date,
    description: str,
    lines: list[EntryLine],
    branch_id: int | None,
    reference: str | None,
    created_by_user_id: int | None,
) -> JournalEntry:
    lines = [line for line in lines if line.debit > 0 or line.credit > 0]
    codes = {line.account_code for line in lines}
    found = set(db.execute(select(Account.code).where(Account.code.in_(sorted(codes)), Account.active.is_(True))).scalars().all())
    if codes - found:
        raise AccountingIntegrationError(
            f'Cannot post {source_type} {source_id}: missing accounts {", ".join(sorted(codes - found))}',
            operation_type=JOURNAL_SYNC_OPERATION,
            payload=payload,
        )
    return create_journal_entry(
        db,
        entry_date=entry_date,
        description=description,
        lines=lines,
        branch_id=branch_id,
        reference=reference,
        source_type=source_type,
        source_id=source_id,
        status=JournalEntryStatus.APPROVED,
        created_by_user_id=created_by_user_id,
    )


def _sale_cost(db: Session, sale_id: int) -> Decimal:
    cost = db.execute(
        select(func.coalesce(func.sum(SalesTransactionItem.quantity * Product.cost_price), 0))
        .join(Product, Product.id == SalesTransactionItem.product_id)
        .where(SalesTransactionItem.transaction_id == sale_id)
    ).scalar_one()
    return round_money(Decimal(str(cost)))


def post_sale(db: Session, *, sale_id: int, entry_date: date, created_by_user_id: int | None = None) -> JournalEntry | None:
    """Book a completed sale; installment sales are booked through their contract."""
    existing = _existing_posting(db, SOURCE_SALE, sale_id)
    if existing:
        return existing
    sale = db.execute(select(SalesTransaction).where(SalesTransaction.id == sale_id)).scalar_one_or_none()
    if not sale:
        raise ValueError('Sale not found')
    if sale.payment_method == 'installment':
        return None

    cost = _sale_cost(db, sale.id)
    lines = [
        EntryLine(SETTLEMENT_ACCOUNTS.get(sale.payment_method, CASH), debit=sale.net_amount),
        EntryLine(DISCOUNT_EXPENSE, debit=sale.discount_amount),
        EntryLine(SALES_REVENUE, credit=sale.total_amount),
        EntryLine(OUTPUT_VAT, credit=sale.tax_amount),
        EntryLine(COST_OF_GOODS_SOLD, debit=cost),
        EntryLine(INVENTORY, credit=cost),
    ]
    return _post_event(
        db,
        source_type=SOURCE_SALE,
        source_id=sale.id,
        payload={'source_type': SOURCE_SALE, 'source_id': sale.id, 'entry_date': entry_date.isoformat()},
        entry_date=entry_date,
        description=f'Sale {sale.transaction_number}',
        lines=lines,
        branch_id=sale.branch_id,
        reference=sale.transaction_number,
        created_by_user_id=created_by_user_id,
    )


def post_contract(
    db: Session, *, contract_id: int, created_by_user_id: int | None = None
) -> JournalEntry:
    existing = _existing_posting(db, SOURCE_CONTRACT, contract_id)
    if existing:
        return existing
    contract = db.execute(
        select(InstallmentContract).where(InstallmentContract.id == contract_id)
    ).scalar_one_or_none()
    if not contract:
        raise ValueError('Contract not found')

    # Processing fee and interest are earned over the term; both are booked as interest revenue.
    finance_income = contract.total_payable - contract.financed_amount
    lines = [
        EntryLine(CASH, debit=contract.down_payment, description='Down payment'),
        EntryLine(INSTALLMENT_RECEIVABLE, debit=contract.total_payable),
        EntryLine(SALES_REVENUE, credit=contract.total_amount),
        EntryLine(INTEREST_REVENUE, credit=finance_income),
    ]
    return _post_event(
        db,
        source_type=SOURCE_CONTRACT,
        source_id=contract.id,
        payload={'source_type': SOURCE_CONTRACT, 'source_id': contract.id},
        entry_date=contract.contract_date,
        description=f'Installment contract {contract.contract_number}',
        lines=lines,
        branch_id=contract.branch_id,
        reference=contract.contract_number,
        created_by_user_id=created_by_user_id,
    )


def post_installment_payment(
    db: Session,
    *,
    contract_id: int,
    amount: Decimal,
    late_fee: Decimal,
    payment_method: str,
    paid_date: date,
    receipt_number: str | None = None,
    created_by_user_id: int | None = None,
) -> JournalEntry:
    contract = db.execute(
        select(InstallmentContract).where(InstallmentContract.id == contract_id)
    ).scalar_one_or_none()
    if not contract:
        raise ValueError('Contract not found')
    amount = round_money(amount)
    late_fee = round_money(late_fee)
    if late_fee > amount:
        raise ValueError('Late fee cannot exceed the payment amount')

    lines = [
        EntryLine(SETTLEMENT_ACCOUNTS.get(payment_method, CASH), debit=amount),
        EntryLine(INSTALLMENT_RECEIVABLE, credit=amount - late_fee),
        EntryLine(LATE_FEE_REVENUE, credit=late_fee),
    ]
    payload = {
        'source_type': SOURCE_INSTALLMENT_PAYMENT,
        'source_id': contract.id,
        'amount': str(amount),
        'late_fee': str(late_fee),
        'payment_method': payment_method,
        'paid_date': paid_date.isoformat(),
        'receipt_number': receipt_number,
    }
    return _post_event(
        db,
        source_type=SOURCE_INSTALLMENT_PAYMENT,
        source_id=contract.id,
        payload=payload,
        entry_date=paid_date,
        description=f'Installment payment on {contract.contract_number}',
        lines=lines,
        branch_id=contract.branch_id,
        reference=receipt_number or contract.contract_number,
        created_by_user_id=created_by_user_id,
    )


def post_from_payload(db: Session, payload: dict) -> int | None:
    """Replay a posting that failed earlier, from its recovery-queue payload."""
    source_type = payload.get('source_type')
    source_id = int(payload['source_id'])
    if source_type == SOURCE_SALE:
        entry = post_sale(db, sale_id=source_id, entry_date=date.fromisoformat(payload['entry_date']))
    elif source_type == SOURCE_CONTRACT:
        entry = post_contract(db, contract_id=source_id)
    elif source_type == SOURCE_INSTALLMENT_PAYMENT:
        entry = post_installment_payment(
            db,
            contract_id=source_id,
            amount=Decimal(payload['amount']),
            late_fee=Decimal(payload['late_fee']),
            payment_method=payload['payment_method'],
            paid_date=date.fromisoformat(payload['paid_date']),
            receipt_number=payload.get('receipt_number'),
        )
    else:
        raise ValueError(f'Unknown journal source type: {source_type}')
    return entry.id if entry else None
