from sqlalchemy import Column, String, Integer, CheckConstraint

from safescan.platform.db.base import BaseModel


class Wallet(BaseModel):

    __tablename__ = "wallets"

    user_id = Column(String, unique=True, nullable=False)
    credit_balance = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="check_credit_balance_non_negative"),
    )
