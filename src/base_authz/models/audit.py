"""审计日志模型。"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from base_authz.models.base import Base, UUIDPrimaryKeyMixin


class AuditLog(Base, UUIDPrimaryKeyMixin):
    """权限配置变更审计日志。"""

    __tablename__ = "audit_logs"

    # 操作发生的基地，系统级配置为 `*`。
    domain: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # 操作人用户 ID。
    actor_user_id: Mapped[str | None] = mapped_column(String(64))
    # 动作标识，例如 policy.add / binding.remove。
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    # 资源类型，例如 role/policy_rule/field_permission。
    resource_type: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(128), nullable=False)
    before_json: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    after_json: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
