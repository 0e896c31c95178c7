"""
Credit ledger.

``reserve_and_create_job`` is the only code path that spends credits: the debit
and the job insert commit together or not at all.
"""
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from safescan.features.scan.errors import ScanError, ScanErrorCode, database_error, insufficient_credits
from safescan.features.scan.models.scan_job import ScanJob, ScanJobState
from safescan.features.scan.models.wallet import Wallet
from safescan.features.scan.services.jobs.job_store import ScanJobSnapshot
from safescan.platform.db.base import utcnow
from safescan.platform.logger import get_logger
from safescan.platform.result import Err, Ok, Result

logger = get_logger(__name__)


@dataclass(frozen=True)
class WalletBalance:
    user_id: str
    balance: int
    updated_at: datetime


class CreditLedger:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _ensure_wallet(self, db: Session, user_id: str) -> Wallet:
        """Insert-if-absent. A concurrent insert for the same user wins; we read theirs back."""
        wallet = db.execute(select(Wallet).where(Wallet.user_id == user_id)).scalar_one_or_none()
        if wallet is not None:
            return wallet

        db.add(Wallet(user_id=user_id, credit_balance=0))
        try:
            db.commit()
            logger.info(f"Provisioned wallet for user {user_id}")
        except IntegrityError:
            db.rollback()
            logger.info(f"Wallet for user {user_id} was provisioned concurrently, re-reading")

        return db.execute(select(Wallet).where(Wallet.user_id == user_id)).scalar_one()

    def get_balance(self, user_id: str) -> Result[WalletBalance, ScanError]:
        try:
            with self._session_factory() as db:
                wallet = self._ensure_wallet(db, user_id)
                return Ok(WalletBalance(user_id=user_id, balance=wallet.credit_balance, updated_at=wallet.updated_at))
        except SQLAlchemyError as e:
            logger.error(f"Failed to read wallet for user {user_id}: {e}")
            return Err(database_error(e))

    def add_credits(self, user_id: str, amount: int) -> Result[WalletBalance, ScanError]:
        if amount <= 0:
            return Err(ScanError(code=ScanErrorCode.VALIDATION_ERROR, message="Credit amount must be positive"))
        try:
            with self._session_factory() as db:
                self._ensure_wallet(db, user_id)
                db.execute(
                    update(Wallet)
                    .where(Wallet.user_id == user_id)
                    .values(credit_balance=Wallet.credit_balance + amount, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                db.commit()
                wallet = db.execute(select(Wallet).where(Wallet.user_id == user_id)).scalar_one()
                db.refresh(wallet)
                logger.info(f"Added {amount} credits for user {user_id}, balance {wallet.credit_balance}")
                return Ok(WalletBalance(user_id=user_id, balance=wallet.credit_balance, updated_at=wallet.updated_at))
        except SQLAlchemyError as e:
            logger.error(f"Failed to add credits for user {user_id}: {e}")
            return Err(database_error(e))

    def reserve_and_create_job(self, user_id: str, url: str, cost: int) -> Result[ScanJobSnapshot, ScanError]:
        """
        Debit ``cost`` credits and create a QUEUED scan job in one transaction.

        The debit is a conditional update, so concurrent reservations against the
        same wallet serialize on the row and never push the balance below zero.
        """
        if cost < 0:
            return Err(ScanError(code=ScanErrorCode.VALIDATION_ERROR, message="Scan cost cannot be negative"))

        try:
            with self._session_factory() as db:
                self._ensure_wallet(db, user_id)

                debit = db.execute(
                    update(Wallet)
                    .where(Wallet.user_id == user_id, Wallet.credit_balance >= cost)
                    .values(credit_balance=Wallet.credit_balance - cost, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if debit.rowcount == 0:
                    db.rollback()
                    available = db.execute(
                        select(Wallet.credit_balance).where(Wallet.user_id == user_id)
                    ).scalar_one()
                    logger.info(f"Insufficient credits for user {user_id}: required {cost}, available {available}")
                    return Err(insufficient_credits(required=cost, available=available))

                job = ScanJob(user_id=user_id, url=url, state=ScanJobState.QUEUED, version=1)
                db.add(job)
                db.commit()

                logger.info(f"[{job.id}] Created scan job for user {user_id}, debited {cost} credit(s)")
                return Ok(ScanJobSnapshot.from_model(job))
        except SQLAlchemyError as e:
            logger.error(f"Failed to reserve credits for user {user_id}: {e}")
            return Err(database_error(e))
