"""
Caller membership context, resolved once at the API boundary.

Authentication is outside this engine; callers arrive with a user, a
classroom and a role string which is collapsed into the closed Role set.
"""

import enum
from dataclasses import dataclass

INSTRUCTOR_ROLE_NAMES = {"OWNER", "ASSISTANT", "TEACHER", "INSTRUCTOR"}


class Role(str, enum.Enum):
    INSTRUCTOR = "INSTRUCTOR"
    STUDENT = "STUDENT"

    @classmethod
    def from_membership_role(cls, raw: str) -> "Role":
        if raw and raw.strip().upper() in INSTRUCTOR_ROLE_NAMES:
            return cls.INSTRUCTOR
        return cls.STUDENT


@dataclass(frozen=True)
class Membership:
    user_id: str
    classroom_id: str
    role: Role

    @property
    def is_instructor(self) -> bool:
        return self.role is Role.INSTRUCTOR
