# Overview: Cash register balances and postings.

"""
Cash Register Service

WHY: Certified documents paid in cash (or any method tied to a register)
move the register balance. Balances are shared by every terminal, so they
are only changed by a single atomic UPDATE, never read-then-write.
"""

from sqlalchemy import update

from ..extensions import db
from ..models import CashRegister, CashRegisterPosting
from ..errors import RegisterNotFound, ValidationFailure


REGISTER_STATUSES = ("OPEN", "CLOSED", "SUSPENDED")


def create_register(name: str, opening_balance_cents: int = 0, operator_ref: str | None = None) -> CashRegister:
    if not name or not name.strip():
        raise ValidationFailure("name is required")
    if not isinstance(opening_balance_cents, int) or isinstance(opening_balance_cents, bool):
        raise ValidationFailure("opening_balance_cents must be an integer")

    register = CashRegister(
        name=name.strip(),
        status="OPEN",
        opening_balance_cents=opening_balance_cents,
        balance_cents=opening_balance_cents,
        operator_ref=operator_ref,
    )
    db.session.add(register)
    db.session.commit()
    return register


def get_register(register_id: int) -> CashRegister:
    register = db.session.get(CashRegister, register_id) if register_id is not None else None
    if not register:
        raise RegisterNotFound(f"Cash register {register_id} not found", details={"cash_register_id": register_id})
    return register


def adjust_balance(register_id: int, delta_cents: int) -> None:
    """
    balance' = balance + delta as one statement, inside the caller's
    transaction. Raises RegisterNotFound when no row was touched.
    """
    result = db.session.execute(
        update(CashRegister)
        .where(CashRegister.id == register_id)
        .values(balance_cents=CashRegister.balance_cents + delta_cents)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise RegisterNotFound(f"Cash register {register_id} not found", details={"cash_register_id": register_id})


def get_balance(register_id: int) -> int:
    register = get_register(register_id)
    db.session.refresh(register)
    return register.balance_cents


def list_postings(register_id: int, limit: int = 100, offset: int = 0) -> list[CashRegisterPosting]:
    get_register(register_id)
    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500
    return (
        db.session.query(CashRegisterPosting)
        .filter_by(cash_register_id=register_id)
        .order_by(CashRegisterPosting.id.desc())
        .offset(max(offset, 0))
        .limit(limit)
        .all()
    )
