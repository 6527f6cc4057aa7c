# app/services/research_service.py
from __future__ import annotations

import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import AlreadyDecidedError, NotFoundError, ValidationError
from app.models.enums import TransferCategory
from app.models.research_paper import PaperAccess, ResearchPaper
from app.models.transfer_receipt import TransferReceipt
from app.policies.rbac import ACTION_PUBLISH_PAPER, Principal, require_action
from app.services.notification_service import NotificationService
from app.services.wallet_service import WalletService, new_reference

logger = logging.getLogger(__name__)


class ResearchService:
    """
    Paper listings and purchases. A purchase is a plain wallet transfer
    buyer -> researcher plus an access grant, in one transaction.
    """

    def __init__(
        self,
        wallets: Optional[WalletService] = None,
        notifications: Optional[NotificationService] = None,
    ):
        self.wallets = wallets or WalletService()
        self.notifications = notifications or NotificationService()

    def publish(self, db: Session, *, principal: Principal, title: str, price: int) -> ResearchPaper:
        require_action(principal, ACTION_PUBLISH_PAPER)
        if not title or not title.strip():
            raise ValidationError("title is required.", field="title")
        if price < 0:
            raise ValidationError("price must not be negative.", field="price")

        paper = ResearchPaper(researcher_id=principal.participant_id, title=title.strip(), price=price)
        db.add(paper)
        db.commit()
        db.refresh(paper)
        return paper

    def list_papers(self, db: Session, *, researcher_id: Optional[str] = None) -> List[ResearchPaper]:
        q = select(ResearchPaper)
        if researcher_id:
            q = q.where(ResearchPaper.researcher_id == researcher_id)
        return db.execute(q.order_by(ResearchPaper.created_at.desc())).scalars().all()

    def has_access(self, db: Session, *, user_id: str, paper_id: uuid.UUID) -> bool:
        return bool(
            db.execute(
                select(PaperAccess.id).where(
                    PaperAccess.user_id == user_id,
                    PaperAccess.paper_id == paper_id,
                )
            ).first()
        )

    def purchase(
        self,
        db: Session,
        *,
        principal: Principal,
        paper_id: uuid.UUID,
        commit: bool = True,
    ) -> Tuple[PaperAccess, Optional[TransferReceipt]]:
        paper = db.get(ResearchPaper, paper_id)
        if not paper:
            raise NotFoundError("Paper not found.", field="paperId")
        if paper.researcher_id == principal.participant_id:
            raise ValidationError("You cannot purchase your own paper.", field="paperId")
        if self.has_access(db, user_id=principal.participant_id, paper_id=paper_id):
            raise AlreadyDecidedError("You already own this paper.", field="paperId")

        try:
            receipt = None
            if paper.price > 0:
                receipt = self.wallets.transfer(
                    db,
                    sender_id=principal.participant_id,
                    receiver_id=paper.researcher_id,
                    amount=paper.price,
                    category=TransferCategory.research_purchase,
                    description=f"Purchase of research paper: {paper.title}",
                    credit_category=TransferCategory.research_earning,
                    credit_description="Research paper purchase",
                    metadata={"paperId": str(paper.id)},
                    reference=new_reference("PAPER"),
                    commit=False,
                )

            access = PaperAccess(
                user_id=principal.participant_id,
                paper_id=paper.id,
                access_type="purchased",
                reference=receipt.reference if receipt else new_reference("FREE"),
            )
            db.add(access)
            db.flush()

            self.notifications.add(
                db,
                user_id=paper.researcher_id,
                name=principal.display_name,
                role=principal.role.value,
                message=f"purchased your research paper: {paper.title}",
            )
            if commit:
                db.commit()
                db.refresh(access)
        except Exception:
            db.rollback()
            raise

        logger.info(
            "[research] purchase paper=%s buyer=%s price=%s",
            paper_id,
            principal.participant_id,
            paper.price,
        )
        return access, receipt
