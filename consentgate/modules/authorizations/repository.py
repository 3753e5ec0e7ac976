import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy import select, update, and_, or_, desc
from sqlalchemy.ext.asyncio import AsyncSession
from consentgate.modules.authorizations.models import AuthorizationGrant, GrantStatus, AccessScope, SCOPE_COLUMNS

_OPEN = (GrantStatus.PENDING, GrantStatus.ACTIVE)

def effective_status_clause(status: GrantStatus, at: datetime):
    # SQL form of AuthorizationGrant.effective_status(at) == status
    G = AuthorizationGrant
    if status == GrantStatus.EXPIRED:
        return or_(G.status == GrantStatus.EXPIRED, and_(G.status.in_(_OPEN), G.expires_at <= at))
    if status in _OPEN:
        return and_(G.status == status, G.expires_at > at)
    return G.status == status

def not_expired_clause(at: datetime):
    G = AuthorizationGrant
    return and_(G.status != GrantStatus.EXPIRED, or_(G.status.not_in(_OPEN), G.expires_at > at))

class GrantRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, org_id: uuid.UUID, **data) -> AuthorizationGrant:
        obj = AuthorizationGrant(org_id=org_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, grant_id: uuid.UUID) -> AuthorizationGrant | None:
        # decisions must start from committed state, not an identity-map copy
        q = select(AuthorizationGrant).where(
            AuthorizationGrant.id == grant_id,
            AuthorizationGrant.deleted_at.is_(None),
        ).execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def find_active(self, patient_id: uuid.UUID, org_id: uuid.UUID, at: datetime) -> AuthorizationGrant | None:
        q = select(AuthorizationGrant).where(
            AuthorizationGrant.patient_id == patient_id,
            AuthorizationGrant.org_id == org_id,
            AuthorizationGrant.status == GrantStatus.ACTIVE,
            AuthorizationGrant.expires_at > at,
            AuthorizationGrant.deleted_at.is_(None),
        ).order_by(desc(AuthorizationGrant.expires_at)).limit(1)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def find_open_pending(self, patient_id: uuid.UUID, org_id: uuid.UUID,
                                practitioner_id: uuid.UUID | None, at: datetime) -> AuthorizationGrant | None:
        q = select(AuthorizationGrant).where(
            AuthorizationGrant.patient_id == patient_id,
            AuthorizationGrant.org_id == org_id,
            AuthorizationGrant.status == GrantStatus.PENDING,
            AuthorizationGrant.expires_at > at,
            AuthorizationGrant.deleted_at.is_(None),
        )
        if practitioner_id is None:
            q = q.where(AuthorizationGrant.requesting_practitioner_id.is_(None))
        else:
            q = q.where(AuthorizationGrant.requesting_practitioner_id == practitioner_id)
        res = await self.session.execute(q.order_by(desc(AuthorizationGrant.created_at)).limit(1))
        return res.scalar_one_or_none()

    async def find_authorizing_grant(self, patient_id: uuid.UUID, org_id: uuid.UUID,
                                     scope: AccessScope, at: datetime) -> AuthorizationGrant | None:
        # status alone is never enough: expiry is part of the predicate
        flag = getattr(AuthorizationGrant, SCOPE_COLUMNS[scope])
        q = select(AuthorizationGrant).where(
            AuthorizationGrant.patient_id == patient_id,
            AuthorizationGrant.org_id == org_id,
            AuthorizationGrant.status == GrantStatus.ACTIVE,
            AuthorizationGrant.expires_at > at,
            AuthorizationGrant.deleted_at.is_(None),
            flag.is_(True),
        ).order_by(desc(AuthorizationGrant.expires_at)).limit(1)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def transition(self, grant_id: uuid.UUID, *, patient_id: uuid.UUID,
                         from_state: GrantStatus, to: GrantStatus,
                         at: datetime, **values) -> bool:
        """Conditional single-row update; False when the row is no longer in ``from_state``."""
        q = (
            update(AuthorizationGrant)
            .where(
                AuthorizationGrant.id == grant_id,
                AuthorizationGrant.patient_id == patient_id,
                AuthorizationGrant.status == from_state,
                AuthorizationGrant.expires_at > at,
                AuthorizationGrant.deleted_at.is_(None),
            )
            .values(status=to, updated_at=at, version=AuthorizationGrant.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(q)
        return res.rowcount == 1

    async def list_for_patient(self, patient_id: uuid.UUID, *, at: datetime,
                               status: GrantStatus | None = None, include_expired: bool = True,
                               limit: int = 50) -> Sequence[AuthorizationGrant]:
        q = select(AuthorizationGrant).where(
            AuthorizationGrant.patient_id == patient_id,
            AuthorizationGrant.deleted_at.is_(None),
        )
        if status is not None:
            q = q.where(effective_status_clause(status, at))
        if not include_expired:
            q = q.where(not_expired_clause(at))
        q = q.order_by(desc(AuthorizationGrant.created_at)).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list_for_org(self, org_id: uuid.UUID, *, at: datetime,
                           status: GrantStatus | None = None, practitioner_id: uuid.UUID | None = None,
                           include_expired: bool = False, limit: int = 100) -> Sequence[AuthorizationGrant]:
        q = select(AuthorizationGrant).where(
            AuthorizationGrant.org_id == org_id,
            AuthorizationGrant.deleted_at.is_(None),
        )
        if practitioner_id is not None:
            q = q.where(AuthorizationGrant.requesting_practitioner_id == practitioner_id)
        if status is not None:
            q = q.where(effective_status_clause(status, at))
        if not include_expired:
            q = q.where(not_expired_clause(at))
        q = q.order_by(desc(AuthorizationGrant.created_at)).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def mark_expired(self, at: datetime) -> list[tuple[uuid.UUID, uuid.UUID]]:
        """Bulk PENDING/ACTIVE -> EXPIRED for everything past expires_at; returns (id, org_id) of changed rows."""
        q = (
            update(AuthorizationGrant)
            .where(
                AuthorizationGrant.status.in_(_OPEN),
                AuthorizationGrant.expires_at <= at,
                AuthorizationGrant.deleted_at.is_(None),
            )
            .values(status=GrantStatus.EXPIRED, updated_at=at, version=AuthorizationGrant.version + 1)
            .returning(AuthorizationGrant.id, AuthorizationGrant.org_id)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(q)
        return [(row[0], row[1]) for row in res.all()]
