#app/services/wallet_service.py
from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.errors import (
    InsufficientFundsError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
)
from app.core.hashing import GENESIS_HASH, hash_chain
from app.models.enums import EntryType, TransferCategory
from app.models.transfer_receipt import TransferReceipt
from app.models.user import User
from app.models.wallet import Wallet, WalletEntry

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def new_reference(prefix: str = "TXN") -> str:
    return f"{prefix}-" + secrets.token_hex(8).upper()


class WalletService:
    """
    Per-user balances with atomic transfers.

    Every movement appends a hash-chained WalletEntry to each wallet it
    touches; transfers also write one TransferReceipt. Methods take
    ``commit=False`` when they run inside a larger transaction (stage
    payments, idempotent endpoints).
    """

    # ─────────────────────────────────────────────
    # INTERNAL HELPERS
    # ─────────────────────────────────────────────

    def _require_user(self, db: Session, user_id: str, *, field: str) -> User:
        user = db.get(User, user_id)
        if not user or not user.is_active:
            raise NotFoundError(f"User {user_id} not found.", field=field)
        return user

    def _lock_wallets(self, db: Session, user_ids: List[str]) -> Dict[str, Wallet]:
        """
        Lock wallet rows in user_id order (FOR UPDATE) so two opposite
        transfers cannot deadlock.
        """
        rows = db.execute(
            select(Wallet)
            .where(Wallet.user_id.in_(user_ids))
            .order_by(Wallet.user_id)
            .with_for_update()
        ).scalars().all()
        return {w.user_id: w for w in rows}

    def _balance(self, db: Session, wallet_id: uuid.UUID) -> int:
        return db.execute(select(Wallet.balance).where(Wallet.id == wallet_id)).scalar_one()

    def _last_entry(self, db: Session, wallet_id: uuid.UUID) -> Optional[WalletEntry]:
        return db.execute(
            select(WalletEntry)
            .where(WalletEntry.wallet_id == wallet_id)
            .order_by(WalletEntry.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _append_entry(
        self,
        db: Session,
        *,
        wallet: Wallet,
        entry_type: EntryType,
        category: str,
        amount: int,
        balance_after: int,
        reference: str,
        description: str,
        counterparty_user_id: Optional[str] = None,
    ) -> WalletEntry:
        last = self._last_entry(db, wallet.id)
        prev_hash = last.entry_hash if last else GENESIS_HASH
        seq = 1 if not last else last.seq + 1

        payload = {
            "wallet_id": str(wallet.id),
            "user_id": wallet.user_id,
            "seq": seq,
            "entry_type": entry_type.value,
            "category": category,
            "amount": amount,
            "balance_after": balance_after,
            "reference": reference,
            "description": description,
            "counterparty_user_id": counterparty_user_id,
            "created_at": _now().isoformat(),
        }

        row = WalletEntry(
            wallet_id=wallet.id,
            seq=seq,
            entry_type=entry_type.value,
            category=category,
            amount=amount,
            balance_after=balance_after,
            reference=reference,
            description=description,
            counterparty_user_id=counterparty_user_id,
            prev_hash=prev_hash,
            entry_hash=hash_chain(prev_hash, payload),
            payload_json=payload,
        )
        db.add(row)
        db.flush()
        return row

    def _finish(self, db: Session, commit: bool) -> None:
        if commit:
            db.commit()
        else:
            db.flush()

    # ─────────────────────────────────────────────
    # READS
    # ─────────────────────────────────────────────

    def get_wallet(self, db: Session, user_id: str) -> Optional[Wallet]:
        return db.execute(select(Wallet).where(Wallet.user_id == user_id)).scalar_one_or_none()

    def ensure_wallet(self, db: Session, user_id: str) -> Wallet:
        """Wallets are created lazily with a zero balance."""
        wallet = self.get_wallet(db, user_id)
        if wallet:
            return wallet

        self._require_user(db, user_id, field="userId")
        wallet = Wallet(user_id=user_id, balance=0, is_locked=False)
        db.add(wallet)
        db.flush()
        return wallet

    def get_balance(self, db: Session, user_id: str) -> int:
        wallet = self.get_wallet(db, user_id)
        return self._balance(db, wallet.id) if wallet else 0

    def list_entries(self, db: Session, *, user_id: str, limit: int = 50) -> List[WalletEntry]:
        wallet = self.get_wallet(db, user_id)
        if not wallet:
            return []
        return (
            db.execute(
                select(WalletEntry)
                .where(WalletEntry.wallet_id == wallet.id)
                .order_by(WalletEntry.seq.desc())
                .limit(limit)
            )
            .scalars()
            .all()
        )

    def verify_chain(self, db: Session, *, user_id: str) -> bool:
        """
        Verifies the wallet's entry hash chain and that the stored balance
        equals the last entry's balance_after.
        """
        wallet = self.get_wallet(db, user_id)
        if not wallet:
            return True

        entries = (
            db.execute(
                select(WalletEntry)
                .where(WalletEntry.wallet_id == wallet.id)
                .order_by(WalletEntry.seq.asc())
            )
            .scalars()
            .all()
        )

        prev_hash = GENESIS_HASH
        for e in entries:
            if e.prev_hash != prev_hash or e.entry_hash != hash_chain(prev_hash, e.payload_json):
                return False
            prev_hash = e.entry_hash

        expected_balance = entries[-1].balance_after if entries else 0
        return self._balance(db, wallet.id) == expected_balance

    # ─────────────────────────────────────────────
    # MUTATIONS
    # ─────────────────────────────────────────────

    def deposit(
        self,
        db: Session,
        *,
        user_id: str,
        amount: int,
        description: str = "Money added to wallet",
        commit: bool = True,
    ) -> WalletEntry:
        if amount <= 0:
            raise ValidationError("amount must be positive.", field="amount")

        wallet = self.ensure_wallet(db, user_id)
        self._lock_wallets(db, [user_id])

        db.execute(
            update(Wallet)
            .where(Wallet.id == wallet.id)
            .values(balance=Wallet.balance + amount, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        balance = self._balance(db, wallet.id)

        entry = self._append_entry(
            db,
            wallet=wallet,
            entry_type=EntryType.credit,
            category=TransferCategory.deposit.value,
            amount=amount,
            balance_after=balance,
            reference=new_reference("DEP"),
            description=description,
        )
        self._finish(db, commit)

        logger.info("[wallet] deposit user=%s amount=%s balance=%s", user_id, amount, balance)
        return entry

    def transfer(
        self,
        db: Session,
        *,
        sender_id: str,
        receiver_id: str,
        amount: int,
        category: TransferCategory = TransferCategory.transfer,
        description: str = "Wallet transfer",
        credit_category: Optional[TransferCategory] = None,
        credit_description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        reference: Optional[str] = None,
        commit: bool = True,
    ) -> TransferReceipt:
        """
        Atomic sender -> receiver move.

        The debit is a single guarded UPDATE (balance >= amount), so a
        concurrent transfer that drained the wallet first makes this one
        match zero rows and fail with InsufficientFundsError instead of
        overdrawing. Debit, credit, entries and receipt share one transaction.
        """
        if amount <= 0:
            raise ValidationError("amount must be positive.", field="amount")
        if sender_id == receiver_id:
            raise ValidationError("Cannot transfer to yourself.", field="receiverId")

        self._require_user(db, receiver_id, field="receiverId")
        sender_wallet = self.ensure_wallet(db, sender_id)
        receiver_wallet = self.ensure_wallet(db, receiver_id)

        locked = self._lock_wallets(db, [sender_id, receiver_id])
        if locked[receiver_id].is_locked:
            raise NotEligibleError("Receiver wallet is locked.", field="receiverId")
        if locked[sender_id].is_locked:
            raise NotEligibleError("Sender wallet is locked.")

        debit = db.execute(
            update(Wallet)
            .where(Wallet.id == sender_wallet.id, Wallet.balance >= amount)
            .values(balance=Wallet.balance - amount, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        if debit.rowcount != 1:
            logger.info(
                "[wallet] insufficient funds sender=%s amount=%s balance=%s",
                sender_id,
                amount,
                self._balance(db, sender_wallet.id),
            )
            raise InsufficientFundsError(
                f"Insufficient balance for transfer of {amount}.", field="amount"
            )

        db.execute(
            update(Wallet)
            .where(Wallet.id == receiver_wallet.id)
            .values(balance=Wallet.balance + amount, updated_at=_now())
            .execution_options(synchronize_session=False)
        )

        sender_balance = self._balance(db, sender_wallet.id)
        receiver_balance = self._balance(db, receiver_wallet.id)
        ref = reference or new_reference()

        self._append_entry(
            db,
            wallet=sender_wallet,
            entry_type=EntryType.debit,
            category=category.value,
            amount=amount,
            balance_after=sender_balance,
            reference=ref,
            description=description,
            counterparty_user_id=receiver_id,
        )
        self._append_entry(
            db,
            wallet=receiver_wallet,
            entry_type=EntryType.credit,
            category=(credit_category or category).value,
            amount=amount,
            balance_after=receiver_balance,
            reference=ref,
            description=credit_description or description,
            counterparty_user_id=sender_id,
        )

        receipt = TransferReceipt(
            reference=ref,
            sender_id=sender_id,
            receiver_id=receiver_id,
            amount=amount,
            category=category.value,
            sender_balance_after=sender_balance,
            receiver_balance_after=receiver_balance,
            metadata_json=metadata or {},
        )
        db.add(receipt)
        self._finish(db, commit)

        logger.info(
            "[wallet] transfer ref=%s sender=%s receiver=%s amount=%s category=%s",
            ref,
            sender_id,
            receiver_id,
            amount,
            category.value,
        )
        return receipt
