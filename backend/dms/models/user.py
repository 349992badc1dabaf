from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dms.db.base import Base, UUIDType, utcnow

"""
Models User / UserRole.

Rôle (fonctionnel) :
- User : compte d’un acteur de terrain ou de coordination (évaluateur, intervenant, donateur...).
  Les identifiants (mot de passe, SSO) sont gérés par le fournisseur d’identité : seul le
  profil et les rôles sont persistés ici.
- UserRole : rôles attribués (ASSESSOR, COORDINATOR, RESPONDER, DONOR, ADMIN), un utilisateur
  pouvant cumuler plusieurs rôles.

Relations :
- User 1..N UserRole (chargés en selectin : nécessaires à chaque contrôle d’accès).
"""


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    organization: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Compte désactivé / verrouillé : refusé à l’authentification
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    roles = relationship("UserRole", back_populates="user", lazy="selectin", cascade="all, delete-orphan")

    @property
    def role_names(self) -> set[str]:
        return {r.role for r in self.roles}

    def has_role(self, *roles: str) -> bool:
        names = self.role_names
        # ADMIN satisfait tous les contrôles de rôle
        return "ADMIN" in names or bool(names.intersection(roles))


class UserRole(Base):
    __tablename__ = "user_roles"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)

    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    assigned_by: Mapped[uuid.UUID | None] = mapped_column(UUIDType, nullable=True)

    user = relationship("User", back_populates="roles")

    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)
