from resto.models.auth_factor import AuthChallenge, AuthFactor
from resto.models.backup_code import BackupCode
from resto.models.user import User
from resto.models.user_session import UserSession

__all__ = [
    "AuthChallenge",
    "AuthFactor",
    "BackupCode",
    "User",
    "UserSession",
]
