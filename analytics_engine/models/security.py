"""安全上下文模型"""

from typing import List, Optional, Set, Literal
from pydantic import BaseModel, Field


class SecurityContext(BaseModel):
    """调用方的可见范围（由外部 RBAC 层解析并授权）"""
    user_id: str = Field(..., description="用户ID")
    accessible_practices: Set[int] = Field(default_factory=set, description="可访问的诊所ID")
    accessible_providers: Set[int] = Field(default_factory=set, description="可访问的医生ID")
    permission_scope: Literal["own", "organization", "all"] = Field("organization", description="权限范围")
    organization_ids: Optional[List[str]] = Field(None, description="所属组织ID")

    @property
    def is_fail_closed(self) -> bool:
        """权限范围对应的可访问集合为空，查询必须返回零行"""
        if self.permission_scope == "organization":
            return not self.accessible_practices
        if self.permission_scope == "own":
            return not self.accessible_providers
        return False
