from dataclasses import dataclass


@dataclass(slots=True)
class Principal:
    subject: str

    def require_owner(self, owner_id: str) -> None:
        if self.subject != owner_id:
            raise PermissionError("user is not the owner of this entity")
