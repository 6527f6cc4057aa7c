from sqlalchemy.orm import Session

from app.core.security import create_access_token
from app.db.session import SessionLocal
from app.models.enums import ParticipantRole
from app.models.user import User
from app.services.wallet_service import WalletService

SEED_USERS = [
    ("startup-1", ParticipantRole.STARTUP, "Seed Startup", 0),
    ("agency-1", ParticipantRole.FUNDING_AGENCY, "Seed Funding Agency", 10_000_000),
    ("researcher-1", ParticipantRole.RESEARCHER, "Seed Researcher", 0),
    ("mentor-1", ParticipantRole.MENTOR, "Seed Mentor", 50_000),
    ("admin-1", ParticipantRole.ADMIN, "Seed Admin", 0),
]


def seed():
    db: Session = SessionLocal()
    wallets = WalletService()

    try:
        for user_id, role, name, opening in SEED_USERS:
            if db.get(User, user_id):
                continue

            db.add(User(id=user_id, role=role.value, display_name=name))
            db.flush()
            wallets.ensure_wallet(db, user_id)
            if opening:
                wallets.deposit(db, user_id=user_id, amount=opening, description="Seed balance", commit=False)
            db.commit()

        for user_id, role, name, _ in SEED_USERS:
            token = create_access_token(participant_id=user_id, role=role.value, display_name=name)
            print(f"{role.value:<16} {user_id:<14} {token}")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
