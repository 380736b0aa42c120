from datetime import datetime

from tierlist.schemas.common import CamelModel, public_url
from tierlist.services.content import UserEdit, UserSnapshot


class UserEditIn(CamelModel):
    name: str = ""
    profile: str = ""
    accept: bool = False
    icon_is_changed: bool = False
    icon_base64: str = ""

    def to_edit(self) -> UserEdit:
        return UserEdit(
            name=self.name,
            profile=self.profile,
            icon_is_changed=self.icon_is_changed,
            icon_base64=self.icon_base64,
            accept=self.accept,
        )


class UserOut(CamelModel):
    user_id: str
    name: str
    profile: str
    icon_url: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_snapshot(cls, user: UserSnapshot, *, public_base_url: str) -> "UserOut":
        return cls(
            user_id=user.user_id,
            name=user.name,
            profile=user.profile,
            icon_url=public_url(public_base_url, user.icon_url),
            created_at=user.created_at,
            updated_at=user.updated_at,
        )
