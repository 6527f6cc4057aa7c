import pytest

from app.core.errors import InsufficientFundsError, NotEligibleError, NotFoundError, ValidationError
from app.models.enums import ParticipantRole, TransferCategory
from app.models.wallet import Wallet, WalletEntry
from app.services.wallet_service import WalletService


def test_deposit_credits_and_chains(db, make_user):
    user = make_user("mentor-1", ParticipantRole.MENTOR)
    svc = WalletService()

    e1 = svc.deposit(db, user_id=user.participant_id, amount=500)
    e2 = svc.deposit(db, user_id=user.participant_id, amount=250)

    assert svc.get_balance(db, user.participant_id) == 750
    assert (e1.seq, e2.seq) == (1, 2)
    assert e2.prev_hash == e1.entry_hash
    assert e2.balance_after == 750
    assert svc.verify_chain(db, user_id=user.participant_id) is True


def test_transfer_moves_balance_atomically(db, make_user):
    alice = make_user("alice", ParticipantRole.MENTOR, balance=1_000)
    bob = make_user("bob", ParticipantRole.RESEARCHER)
    svc = WalletService()

    receipt = svc.transfer(db, sender_id=alice.participant_id, receiver_id=bob.participant_id, amount=400)

    assert receipt.sender_balance_after == 600
    assert receipt.receiver_balance_after == 400
    assert svc.get_balance(db, "alice") == 600
    assert svc.get_balance(db, "bob") == 400

    debit = svc.list_entries(db, user_id="alice", limit=1)[0]
    credit = svc.list_entries(db, user_id="bob", limit=1)[0]
    assert debit.entry_type == "debit" and credit.entry_type == "credit"
    assert debit.reference == credit.reference == receipt.reference
    assert debit.counterparty_user_id == "bob"


def test_transfer_exact_balance_leaves_zero(db, make_user):
    make_user("alice", ParticipantRole.MENTOR, balance=300)
    make_user("bob", ParticipantRole.RESEARCHER)
    svc = WalletService()

    svc.transfer(db, sender_id="alice", receiver_id="bob", amount=300)
    assert svc.get_balance(db, "alice") == 0


def test_insufficient_funds_changes_nothing(db, make_user):
    make_user("alice", ParticipantRole.MENTOR, balance=100)
    make_user("bob", ParticipantRole.RESEARCHER, balance=5)
    svc = WalletService()

    with pytest.raises(InsufficientFundsError):
        svc.transfer(db, sender_id="alice", receiver_id="bob", amount=101)
    db.rollback()

    assert svc.get_balance(db, "alice") == 100
    assert svc.get_balance(db, "bob") == 5
    assert len(svc.list_entries(db, user_id="alice")) == 1


def test_round_trip_restores_balances(db, make_user):
    make_user("alice", ParticipantRole.MENTOR, balance=1_000)
    make_user("bob", ParticipantRole.RESEARCHER, balance=1_000)
    svc = WalletService()

    svc.transfer(db, sender_id="alice", receiver_id="bob", amount=250)
    svc.transfer(db, sender_id="bob", receiver_id="alice", amount=250)

    assert svc.get_balance(db, "alice") == 1_000
    assert svc.get_balance(db, "bob") == 1_000
    assert svc.verify_chain(db, user_id="alice")
    assert svc.verify_chain(db, user_id="bob")


@pytest.mark.parametrize("amount", [0, -1])
def test_transfer_amount_must_be_positive(db, make_user, amount):
    make_user("alice", ParticipantRole.MENTOR, balance=10)
    make_user("bob", ParticipantRole.RESEARCHER)

    with pytest.raises(ValidationError) as exc:
        WalletService().transfer(db, sender_id="alice", receiver_id="bob", amount=amount)
    assert exc.value.field == "amount"


def test_self_transfer_and_unknown_receiver(db, make_user):
    make_user("alice", ParticipantRole.MENTOR, balance=10)
    svc = WalletService()

    with pytest.raises(ValidationError):
        svc.transfer(db, sender_id="alice", receiver_id="alice", amount=1)
    with pytest.raises(NotFoundError) as exc:
        svc.transfer(db, sender_id="alice", receiver_id="ghost", amount=1)
    assert exc.value.field == "receiverId"


def test_locked_wallet_cannot_receive(db, make_user):
    make_user("alice", ParticipantRole.MENTOR, balance=10)
    make_user("bob", ParticipantRole.RESEARCHER)
    wallet = db.query(Wallet).filter(Wallet.user_id == "bob").one()
    wallet.is_locked = True
    db.commit()

    with pytest.raises(NotEligibleError):
        WalletService().transfer(db, sender_id="alice", receiver_id="bob", amount=1)


def test_credit_category_overrides_receiver_side(db, make_user):
    make_user("alice", ParticipantRole.MENTOR, balance=10)
    make_user("bob", ParticipantRole.RESEARCHER)
    svc = WalletService()

    svc.transfer(
        db,
        sender_id="alice",
        receiver_id="bob",
        amount=4,
        category=TransferCategory.research_purchase,
        credit_category=TransferCategory.research_earning,
    )
    assert svc.list_entries(db, user_id="alice", limit=1)[0].category == "research_purchase"
    assert svc.list_entries(db, user_id="bob", limit=1)[0].category == "research_earning"


def test_verify_chain_detects_tampering(db, make_user):
    make_user("alice", ParticipantRole.MENTOR, balance=100)
    svc = WalletService()
    svc.deposit(db, user_id="alice", amount=50)

    entry = db.query(WalletEntry).order_by(WalletEntry.seq.asc()).first()
    entry.amount = 1_000_000
    entry.payload_json = {**entry.payload_json, "amount": 1_000_000}
    db.commit()

    assert svc.verify_chain(db, user_id="alice") is False


def test_verify_chain_detects_balance_drift(db, make_user):
    make_user("alice", ParticipantRole.MENTOR, balance=100)
    wallet = db.query(Wallet).filter(Wallet.user_id == "alice").one()
    wallet.balance = 5_000
    db.commit()

    assert WalletService().verify_chain(db, user_id="alice") is False
