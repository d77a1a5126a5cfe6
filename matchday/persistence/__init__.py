"""
Persistence layer for matchday data.
No business logic; only read/write interfaces and transactions.
"""
from .db import get_connection, init_db, transaction
from .repositories import (
    UserRepository,
    AdminRepository,
    PlayerRepository,
    MatchRepository,
    SignupRepository,
)

__all__ = [
    "get_connection",
    "init_db",
    "transaction",
    "UserRepository",
    "AdminRepository",
    "PlayerRepository",
    "MatchRepository",
    "SignupRepository",
]
