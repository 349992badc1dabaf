from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.api.deps import AdminUser, CurrentUser
from dms.core.errors import ConflictError, NotFoundError
from dms.db.session import get_db
from dms.models.user import User, UserRole
from dms.schemas.common import PageMeta, Role
from dms.schemas.users import MeOut, UserCreate, UserListResponse, UserOut, UserRolesUpdate, UserUpdate
from dms.services import audit_service, entity_assignment_service

"""
API Utilisateurs.

Rôle (fonctionnel) :
- Profil de l’utilisateur courant (/users/me) avec ses entités affectées.
- Administration des comptes (ADMIN) : création avec rôles, liste filtrée, détail,
  mise à jour du profil / activation / verrouillage, remplacement des rôles.
- Chaque modification est auditée.
"""

router = APIRouter(prefix="/users", tags=["users"])
log = logging.getLogger("dms.users")


async def _get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = (await db.execute(select(User).where(User.id == user_id))).scalars().first()
    if not user:
        raise NotFoundError("Utilisateur introuvable")
    return user


@router.get("/me", response_model=MeOut)
async def me(user: User = CurrentUser, db: AsyncSession = Depends(get_db)):
    return {
        "user": UserOut.model_validate(user),
        "assigned_entity_ids": await entity_assignment_service.assigned_entity_ids(db, user.id),
    }


@router.get("", response_model=UserListResponse)
async def list_users(
    admin: User = AdminUser,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    role: Role | None = None,
    is_active: bool | None = None,
    search: str | None = Query(None, max_length=100),
):
    conditions = []
    if role is not None:
        conditions.append(User.id.in_(select(UserRole.user_id).where(UserRole.role == role.value)))
    if is_active is not None:
        conditions.append(User.is_active.is_(is_active))
    if search:
        like = f"%{search.strip()}%"
        conditions.append(or_(User.name.ilike(like), User.email.ilike(like), User.username.ilike(like)))

    total = (await db.execute(select(func.count()).select_from(User).where(*conditions))).scalar_one()
    rows = (
        await db.execute(
            select(User)
            .where(*conditions)
            .order_by(User.name)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
    ).scalars().all()

    return {"data": rows, "meta": PageMeta(page=page, page_size=page_size, total=total)}


@router.post("", response_model=UserOut, status_code=201)
async def create_user(
    payload: UserCreate,
    request: Request,
    admin: User = AdminUser,
    db: AsyncSession = Depends(get_db),
):
    taken = (
        await db.execute(select(User.id).where(or_(User.email == payload.email, User.username == payload.username)))
    ).first()
    if taken:
        raise ConflictError("Email ou nom d’utilisateur déjà utilisé")

    user = User(
        email=payload.email,
        username=payload.username,
        name=payload.name,
        phone=payload.phone,
        organization=payload.organization,
        roles=[UserRole(role=r, assigned_by=admin.id) for r in sorted({r.value for r in payload.roles})],
    )
    db.add(user)
    await db.flush()

    audit_service.record(
        db,
        action="USER_CREATED",
        resource="user",
        resource_id=user.id,
        user_id=admin.id,
        new_values={"username": user.username, "roles": sorted(user.role_names)},
        request=request,
    )
    await db.commit()
    return user


@router.get("/{user_id}", response_model=UserOut)
async def get_user(user_id: uuid.UUID, admin: User = AdminUser, db: AsyncSession = Depends(get_db)):
    return await _get_user(db, user_id)


@router.patch("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    request: Request,
    admin: User = AdminUser,
    db: AsyncSession = Depends(get_db),
):
    user = await _get_user(db, user_id)

    changes = payload.model_dump(exclude_unset=True)
    old_values = {k: getattr(user, k) for k in changes}
    for field, value in changes.items():
        setattr(user, field, value)

    audit_service.record(
        db,
        action="USER_UPDATED",
        resource="user",
        resource_id=user.id,
        user_id=admin.id,
        old_values=old_values,
        new_values=changes,
        request=request,
    )
    await db.commit()
    return user


@router.put("/{user_id}/roles", response_model=UserOut)
async def replace_roles(
    user_id: uuid.UUID,
    payload: UserRolesUpdate,
    request: Request,
    admin: User = AdminUser,
    db: AsyncSession = Depends(get_db),
):
    user = await _get_user(db, user_id)
    old_roles = sorted(user.role_names)
    wanted = {r.value for r in payload.roles}

    # Diff plutôt que réaffectation : (user_id, role) est unique
    for ur in list(user.roles):
        if ur.role not in wanted:
            user.roles.remove(ur)
    for role in sorted(wanted - user.role_names):
        user.roles.append(UserRole(role=role, assigned_by=admin.id))

    audit_service.record(
        db,
        action="USER_ROLES_UPDATED",
        resource="user",
        resource_id=user.id,
        user_id=admin.id,
        old_values={"roles": old_roles},
        new_values={"roles": sorted(wanted)},
        request=request,
    )
    await db.commit()

    log.info(
        "user_roles_updated",
        extra={"actor": str(admin.id), "resource_id": str(user.id), "old_status": old_roles, "new_status": sorted(wanted)},
    )
    return user
