"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. Each call opens its own session so the
repositories can serve the background scheduler as well as requests.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncContextManager, Callable, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.config import (
    EscalationStatus,
    ItemKind,
    PauseReason,
    SLAStatus,
    TriggerType,
    UNRESOLVED_ESCALATION_STATUSES,
)
from taskflow.core import DuplicateEscalationError, RepositoryException
from taskflow.infrastructure.database import get_session_context
from taskflow.sla.application.services import (
    IEscalationLogRepository,
    IRecipientDirectory,
    ITrackedItemRepository,
)
from taskflow.sla.domain import EscalationLog, TrackedItem
from taskflow.sla.infrastructure.models import (
    CategoryEscalationModel,
    EscalationLogModel,
    TeamModel,
    TrackedItemModel,
    UserModel,
)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]

_UNRESOLVED = [s.value for s in UNRESOLVED_ESCALATION_STATUSES]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive database timestamps as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _parse_uuid(log_id: str) -> Optional[UUID]:
    try:
        return UUID(log_id)
    except (TypeError, ValueError):
        return None


class SQLAlchemyTrackedItemRepository(ITrackedItemRepository):
    """
    SQLAlchemy implementation of the item store.

    Only the SLA clock fields are ever written back.
    """

    def __init__(
        self,
        active_statuses: List[str],
        session_factory: SessionFactory = get_session_context
    ):
        self._active_statuses = active_statuses
        self._session_factory = session_factory

    @staticmethod
    def _to_domain(model: TrackedItemModel) -> TrackedItem:
        return TrackedItem(
            id=model.id,
            kind=ItemKind(model.kind),
            title=model.title,
            lifecycle_status=model.lifecycle_status,
            sla_deadline=_as_utc(model.sla_deadline),
            sla_started_at=_as_utc(model.sla_started_at),
            sla_status=SLAStatus(model.sla_status),
            pause_started_at=_as_utc(model.pause_started_at),
            pause_reason=PauseReason(model.pause_reason) if model.pause_reason else None,
            total_paused=timedelta(seconds=model.total_paused_seconds or 0),
            confirmation_deadline=_as_utc(model.confirmation_deadline),
            confirmed_at=_as_utc(model.confirmed_at),
            status_changed_at=_as_utc(model.status_changed_at),
            assignee_id=model.assignee_id,
            team_id=model.team_id,
            category_id=model.category_id,
            deep_link=model.deep_link,
        )

    async def list_active(self, now: datetime) -> List[TrackedItem]:
        """List items in an active lifecycle status."""
        stmt = (
            select(TrackedItemModel)
            .where(TrackedItemModel.lifecycle_status.in_(self._active_statuses))
            .order_by(TrackedItemModel.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [self._to_domain(model) for model in result.scalars().all()]

    async def get(self, item_id: str) -> Optional[TrackedItem]:
        """Get item by ID."""
        async with self._session_factory() as session:
            model = await session.get(TrackedItemModel, item_id)
            return self._to_domain(model) if model else None

    async def save_clock_state(self, item: TrackedItem) -> None:
        """Write the SLA clock fields in one flush."""
        async with self._session_factory() as session:
            model = await session.get(TrackedItemModel, item.id)
            if model is None:
                raise RepositoryException(f"Item {item.id} not found")

            model.sla_status = item.sla_status.value
            model.pause_started_at = item.pause_started_at
            model.pause_reason = item.pause_reason.value if item.pause_reason else None
            model.total_paused_seconds = item.total_paused.total_seconds()
            await session.flush()


class SQLAlchemyEscalationLogRepository(IEscalationLogRepository):
    """
    SQLAlchemy implementation of the escalation log.

    Uniqueness of unresolved logs is checked before insert and backed by
    a partial unique index.
    """

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    @staticmethod
    def _to_domain(model: EscalationLogModel) -> EscalationLog:
        return EscalationLog(
            id=str(model.id),
            item_id=model.item_id,
            item_kind=ItemKind(model.item_kind),
            rule_id=model.rule_id,
            trigger_type=TriggerType(model.trigger_type),
            recipient_id=model.recipient_id,
            reason=model.reason,
            fired_at=_as_utc(model.fired_at),
            status=EscalationStatus(model.status),
            acknowledged_at=_as_utc(model.acknowledged_at),
            resolved_at=_as_utc(model.resolved_at),
            resolution_note=model.resolution_note,
            notification_sent=model.notification_sent,
            notification_sent_at=_as_utc(model.notification_sent_at),
        )

    @staticmethod
    def _unresolved_stmt(item_id: str, rule_id: str):
        return select(EscalationLogModel).where(
            EscalationLogModel.item_id == item_id,
            EscalationLogModel.rule_id == rule_id,
            EscalationLogModel.status.in_(_UNRESOLVED),
        )

    async def _get_model(self, session: AsyncSession, log_id: str) -> EscalationLogModel:
        log_uuid = _parse_uuid(log_id)
        model = await session.get(EscalationLogModel, log_uuid) if log_uuid else None
        if model is None:
            raise RepositoryException(f"Escalation {log_id} not found")
        return model

    async def find_unresolved(self, item_id: str, rule_id: str) -> Optional[EscalationLog]:
        async with self._session_factory() as session:
            result = await session.execute(self._unresolved_stmt(item_id, rule_id))
            model = result.scalars().first()
            return self._to_domain(model) if model else None

    async def append(self, log: EscalationLog) -> EscalationLog:
        """
        Insert a new log.

        Raises:
            DuplicateEscalationError: If an unresolved log exists for the pair
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(self._unresolved_stmt(log.item_id, log.rule_id))
                if result.scalars().first() is not None:
                    raise DuplicateEscalationError(log.item_id, log.rule_id)

                model = EscalationLogModel(
                    item_id=log.item_id,
                    item_kind=log.item_kind.value,
                    rule_id=log.rule_id,
                    trigger_type=log.trigger_type.value,
                    recipient_id=log.recipient_id,
                    reason=log.reason,
                    fired_at=log.fired_at,
                    status=log.status.value,
                    notification_sent=log.notification_sent,
                    notification_sent_at=log.notification_sent_at,
                )
                session.add(model)
                await session.flush()
                return self._to_domain(model)
        except IntegrityError as e:
            raise DuplicateEscalationError(log.item_id, log.rule_id) from e

    async def get(self, log_id: str) -> Optional[EscalationLog]:
        log_uuid = _parse_uuid(log_id)
        if log_uuid is None:
            return None
        async with self._session_factory() as session:
            model = await session.get(EscalationLogModel, log_uuid)
            return self._to_domain(model) if model else None

    async def resolve(self, log_id: str, resolved_at: datetime, note: Optional[str] = None) -> EscalationLog:
        async with self._session_factory() as session:
            model = await self._get_model(session, log_id)
            model.status = EscalationStatus.RESOLVED.value
            model.resolved_at = resolved_at
            model.resolution_note = note
            await session.flush()
            return self._to_domain(model)

    async def acknowledge(self, log_id: str, acknowledged_at: datetime) -> EscalationLog:
        async with self._session_factory() as session:
            model = await self._get_model(session, log_id)
            model.status = EscalationStatus.ACKNOWLEDGED.value
            model.acknowledged_at = acknowledged_at
            await session.flush()
            return self._to_domain(model)

    async def mark_notified(self, log_id: str, sent_at: datetime) -> None:
        async with self._session_factory() as session:
            model = await self._get_model(session, log_id)
            model.notification_sent = True
            model.notification_sent_at = sent_at
            await session.flush()

    async def list_unresolved_unsent(self) -> List[EscalationLog]:
        stmt = (
            select(EscalationLogModel)
            .where(
                EscalationLogModel.status.in_(_UNRESOLVED),
                EscalationLogModel.notification_sent.is_(False),
            )
            .order_by(EscalationLogModel.fired_at.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [self._to_domain(model) for model in result.scalars().all()]

    async def count_fired_since(self, since: datetime) -> int:
        stmt = select(func.count(EscalationLogModel.id)).where(EscalationLogModel.fired_at >= since)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def list_for_recipient(
        self,
        recipient_id: Optional[str],
        unresolved_only: bool = False
    ) -> List[EscalationLog]:
        stmt = select(EscalationLogModel)
        if recipient_id is not None:
            stmt = stmt.where(EscalationLogModel.recipient_id == recipient_id)
        if unresolved_only:
            stmt = stmt.where(EscalationLogModel.status.in_(_UNRESOLVED))
        stmt = stmt.order_by(EscalationLogModel.fired_at.desc())

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [self._to_domain(model) for model in result.scalars().all()]


class SQLAlchemyRecipientDirectory(IRecipientDirectory):
    """Recipient directory backed by the users, teams and category chain tables."""

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    async def team_leader_of(self, user_id: Optional[str], team_id: Optional[str]) -> Optional[str]:
        async with self._session_factory() as session:
            if team_id is None and user_id is not None:
                user = await session.get(UserModel, user_id)
                team_id = user.team_id if user else None
            if team_id is None:
                return None

            team = await session.get(TeamModel, team_id)
            if team is not None and team.leader_id:
                return team.leader_id

            # No designated leader: first active leader-role member of the team
            stmt = (
                select(UserModel.id)
                .where(
                    UserModel.team_id == team_id,
                    UserModel.role == "LEADER",
                    UserModel.is_active.is_(True),
                )
                .order_by(UserModel.created_at.asc())
                .limit(1)
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def first_admin(self) -> Optional[str]:
        stmt = (
            select(UserModel.id)
            .where(UserModel.role == "ADMIN", UserModel.is_active.is_(True))
            .order_by(UserModel.created_at.asc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def category_chain(self, category_id: str) -> List[str]:
        stmt = (
            select(CategoryEscalationModel.user_id)
            .where(CategoryEscalationModel.category_id == category_id)
            .order_by(CategoryEscalationModel.position.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
