from .directory import AccountDirectory
from .models import Account, Role

__all__ = [
    "Account",
    "AccountDirectory",
    "Role",
]
