"""
System wiring and authentication dependencies
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..access import TemplateAccessControl
from ..audit import AuditTrail
from ..config import ProcessFlowConfig, get_config
from ..directory import CallerContext, StorageDirectory
from ..errors import AuthenticationError
from ..instances import InstanceEngine
from ..logging_config import get_logger
from ..reports import ReportBuilder
from ..storage import StorageInterface, create_storage
from ..templates import TemplateStore


logger = get_logger("api.auth")

# JWT Security
security = HTTPBearer(auto_error=False)


class ProcessSystem:
    """Process workflow system with all components initialized"""

    def __init__(self, config: Optional[ProcessFlowConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.directory = StorageDirectory(self.storage)
        self.access = TemplateAccessControl(self.storage, self.directory, self.audit_trail)
        self.templates = TemplateStore(
            self.storage, self.directory, self.access, self.audit_trail, self.config
        )
        self.engine = InstanceEngine(
            self.storage, self.directory, self.templates, self.access,
            self.audit_trail, self.config
        )
        self.reports = ReportBuilder(self.engine, self.directory)


# Global system instance, created on first use
_system: Optional[ProcessSystem] = None


def get_process_system() -> ProcessSystem:
    global _system
    if _system is None:
        _system = ProcessSystem()
    return _system


def create_access_token(user_id: str, config: Optional[ProcessFlowConfig] = None) -> str:
    """Issue a bearer token for a user id"""
    config = config or get_config()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(hours=config.jwt_expiry_hours)
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def get_caller(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
               system: ProcessSystem = Depends(get_process_system)) -> CallerContext:
    """Dependency that validates the JWT and resolves the caller through the directory"""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(
            credentials.credentials,
            system.config.jwt_secret,
            algorithms=[system.config.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        return system.directory.caller_context(user_id)
    except AuthenticationError as e:
        logger.warning("Token for unknown or inactive user %s", user_id)
        raise HTTPException(status_code=401, detail=e.message)
