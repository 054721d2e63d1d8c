"""
Authentication dependencies and system wiring
"""

from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..audit import AuditTrail
from ..config import get_config
from ..debit_cards import DebitCardManager
from ..loans import LoanManager
from ..storage import StorageInterface, create_storage


# JWT Security
security = HTTPBearer(auto_error=False)


class LendingSystem:
    """Lending core with all components initialized over one storage backend"""

    def __init__(self, storage: Optional[StorageInterface] = None):
        config = get_config()
        if storage is None:
            storage = create_storage(config.storage_backend, config.database_path)
        self.storage = storage

        self.audit_trail = AuditTrail(self.storage, enabled=config.enable_audit_logging)
        self.loan_manager = LoanManager(self.storage, self.audit_trail)
        self.debit_card_manager = DebitCardManager(self.storage, self.audit_trail)


_lending_system: Optional[LendingSystem] = None


def get_lending_system() -> LendingSystem:
    """Dependency returning the process-wide system, built on first use"""
    global _lending_system
    if _lending_system is None:
        _lending_system = LendingSystem()
    return _lending_system


def create_access_token(customer_id: str, expires_in: Optional[timedelta] = None) -> str:
    """Issue a signed bearer token for a customer"""
    config = get_config()
    now = datetime.now(timezone.utc)
    if expires_in is None:
        expires_in = timedelta(hours=config.jwt_expiry_hours)
    payload = {"sub": customer_id, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def get_current_customer(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_customer_id: Optional[str] = Header(None)
) -> str:
    """Dependency that validates the bearer JWT and returns the customer id"""
    config = get_config()
    if not config.auth_enabled:
        # Local development: trust the caller-supplied header
        return x_customer_id or "anonymous"

    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(credentials.credentials, config.jwt_secret,
                             algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    customer_id = payload.get("sub")
    if not customer_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return customer_id
