"""Turns a loan status transition into in-app, push and email notifications.

Everything here is best effort: the transition has already been committed,
so failures are logged and reported in the returned summary, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping, Sequence
from uuid import UUID

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.permissions import RoleName
from app.models.loan_application import LoanApplication
from app.models.user import User
from app.schemas.loan import LoanStatus
from app.services.notifications import inbox
from app.services.notifications.channels import PUSH, NotificationChannel
from app.services.notifications.email import SmtpMailer, send_disbursement_email

logger = logging.getLogger(__name__)

LOAN_STATUS_CHANGE = "LOAN_STATUS_CHANGE"
STAFF_NOTIFICATION = "STAFF_NOTIFICATION"


@dataclass(frozen=True)
class NotificationMessage:
    title: str
    body: str


@dataclass(frozen=True)
class StaffNotice:
    role: RoleName
    type: str
    message: NotificationMessage


def transition_key(from_status: LoanStatus | str, to_status: LoanStatus | str) -> str:
    return f"{LoanStatus(from_status).value}_TO_{LoanStatus(to_status).value}"


STATUS_MESSAGES: Mapping[str, NotificationMessage] = MappingProxyType(
    {
        "SUBMITTED_TO_IN_REVIEW": NotificationMessage(
            "Sedang Di-review Marketing",
            "Pengajuan pinjaman Anda sedang di-review oleh tim Marketing",
        ),
        "IN_REVIEW_TO_WAITING_APPROVAL": NotificationMessage(
            "Sedang Di-review Manager",
            "Pinjaman Anda sedang ditinjau oleh Branch Manager",
        ),
        "WAITING_APPROVAL_TO_APPROVED_WAITING_DISBURSEMENT": NotificationMessage(
            "Pinjaman Disetujui",
            "Selamat! Pinjaman Anda telah disetujui, menunggu pencairan",
        ),
        "WAITING_APPROVAL_TO_REJECTED": NotificationMessage(
            "Pinjaman Ditolak",
            "Maaf, pengajuan pinjaman Anda ditolak",
        ),
        "APPROVED_WAITING_DISBURSEMENT_TO_DISBURSED": NotificationMessage(
            "Pinjaman Dicairkan",
            "Dana pinjaman Anda telah dicairkan",
        ),
    }
)

STAFF_NOTICES: Mapping[str, StaffNotice] = MappingProxyType(
    {
        "IN_REVIEW_TO_WAITING_APPROVAL": StaffNotice(
            RoleName.BRANCH_MANAGER,
            "APPROVAL_REQUIRED",
            NotificationMessage(
                "Persetujuan Diperlukan",
                "Ada pengajuan pinjaman baru menunggu persetujuan Anda",
            ),
        ),
        "WAITING_APPROVAL_TO_APPROVED_WAITING_DISBURSEMENT": StaffNotice(
            RoleName.BACK_OFFICE,
            "DISBURSEMENT_REQUIRED",
            NotificationMessage(
                "Pencairan Diperlukan",
                "Pinjaman yang disetujui menunggu pencairan",
            ),
        ),
    }
)


@dataclass(frozen=True)
class _Delivery:
    user_id: UUID
    type: str
    message: NotificationMessage
    data: dict[str, Any]


@dataclass(frozen=True)
class _LoanSnapshot:
    id: UUID
    user_id: UUID
    amount: Decimal


@dataclass
class DispatchSummary:
    key: str
    in_app: int = 0
    push_attempted: int = 0
    push_succeeded: int = 0
    email_sent: bool | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def mapped(self) -> bool:
        return self.key in STATUS_MESSAGES


class LoanNotificationDispatcher:
    def __init__(
        self,
        db: AsyncSession,
        channels: Sequence[NotificationChannel] = (),
        mailer: SmtpMailer | None = None,
    ) -> None:
        self.db = db
        self.channels = list(channels)
        self.mailer = mailer

    async def dispatch(
        self,
        loan: LoanApplication,
        from_status: LoanStatus | str,
        to_status: LoanStatus | str,
    ) -> DispatchSummary:
        key = transition_key(from_status, to_status)
        summary = DispatchSummary(key=key)
        message = STATUS_MESSAGES.get(key)
        if message is None:
            logger.debug("No notification mapped for transition %s", key)
            return summary

        target = _LoanSnapshot(loan.id, loan.user_id, loan.amount)
        data = {
            "loanApplicationId": str(target.id),
            "loanId": str(target.id),
            "fromStatus": LoanStatus(from_status).value,
            "toStatus": LoanStatus(to_status).value,
            "status": LoanStatus(to_status).value,
        }
        deliveries = [
            _Delivery(target.user_id, LOAN_STATUS_CHANGE, message, {**data, "type": LOAN_STATUS_CHANGE})
        ]
        deliveries.extend(await self._staff_deliveries(key, data, summary))

        await self._record_in_app(target, deliveries, summary)
        for delivery in deliveries:
            await self._push(delivery, summary)

        if LoanStatus(to_status) is LoanStatus.DISBURSED:
            summary.email_sent = await self._email_disbursement(target, summary)
        await self._reload_if_expired(loan)
        return summary

    async def _staff_deliveries(
        self, key: str, data: dict[str, Any], summary: DispatchSummary
    ) -> list[_Delivery]:
        notice = STAFF_NOTICES.get(key)
        if notice is None:
            return []
        try:
            staff_ids = await inbox.user_ids_with_role(self.db, notice.role.value)
        except Exception as exc:
            logger.exception("Could not resolve %s recipients for %s", notice.role.value, key)
            summary.errors.append(f"staff lookup: {exc}")
            return []
        staff_data = {**data, "type": STAFF_NOTIFICATION}
        return [_Delivery(user_id, notice.type, notice.message, staff_data) for user_id in staff_ids]

    async def _record_in_app(
        self, loan: _LoanSnapshot, deliveries: list[_Delivery], summary: DispatchSummary
    ) -> None:
        # A failed savepoint only discards the notification rows; the
        # committed loan stays loaded in the session.
        try:
            async with self.db.begin_nested():
                for delivery in deliveries:
                    inbox.add_notification(
                        self.db,
                        user_id=delivery.user_id,
                        type=delivery.type,
                        title=delivery.message.title,
                        body=delivery.message.body,
                        data=delivery.data,
                        loan_id=loan.id,
                    )
        except Exception as exc:
            logger.exception("Failed to store in-app notifications for loan %s", loan.id)
            summary.errors.append(f"in_app: {exc}")
            return

        try:
            await self.db.commit()
        except Exception as exc:
            await self.db.rollback()
            logger.exception("Failed to commit in-app notifications for loan %s", loan.id)
            summary.errors.append(f"in_app: {exc}")
            return
        summary.in_app = len(deliveries)

    async def _reload_if_expired(self, loan: LoanApplication) -> None:
        if not inspect(loan).expired:
            return
        try:
            await self.db.refresh(loan)
        except Exception:
            logger.exception("Could not reload loan %s after notifying", inspect(loan).identity)

    async def _push(self, delivery: _Delivery, summary: DispatchSummary) -> None:
        for channel in self.channels:
            if not channel.supports(PUSH):
                continue
            summary.push_attempted += 1
            try:
                result = await channel.send(
                    delivery.user_id, delivery.message.title, delivery.message.body, delivery.data
                )
            except Exception as exc:
                logger.exception("Push channel raised for user %s", delivery.user_id)
                summary.errors.append(f"push: {exc}")
                continue
            if result.success:
                summary.push_succeeded += 1
            else:
                logger.info("Push not delivered to user %s: %s", delivery.user_id, result.error_message)

    async def _email_disbursement(self, loan: _LoanSnapshot, summary: DispatchSummary) -> bool:
        if self.mailer is None or not self.mailer.enabled:
            logger.info("Disbursement email skipped for loan %s: mailer not configured", loan.id)
            return False
        try:
            user = await self.db.get(User, loan.user_id)
            if user is None:
                logger.warning("Disbursement email skipped: applicant %s not found", loan.user_id)
                return False
            sent = await send_disbursement_email(
                self.mailer,
                user.email,
                user.full_name or user.username,
                loan.id,
                loan.amount,
            )
        except Exception as exc:
            logger.exception("Failed to send disbursement email for loan %s", loan.id)
            summary.errors.append(f"email: {exc}")
            return False
        if sent:
            logger.info("Disbursement email sent to %s for loan %s", user.email, loan.id)
        return sent
