from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """The caller on whose behalf an operation runs. Supplied by the identity layer."""
    user_id: int
    is_admin: bool = False

    def can_manage(self, owner_id) -> bool:
        return self.is_admin or owner_id == self.user_id
