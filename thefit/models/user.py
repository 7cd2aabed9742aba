"""Signed-in user as seen by the client."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class UserProfile:
    """Identity fields the sync and upload layers need."""

    id: int
    username: Optional[str] = None
    name: Optional[str] = None
