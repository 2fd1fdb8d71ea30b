"""
Directory Module

Resolves users (with their admin flag) and client companies for the
workflow engine. The engine only depends on ``DirectoryProvider``; the
storage-backed implementation here is what the API and tests use.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from .errors import AuthenticationError, NotFoundError, ValidationError
from .storage import StorageInterface, StorageRecord


UNKNOWN_USER = "Usuário desconhecido"
UNKNOWN_CLIENT = "Cliente desconhecido"


@dataclass(frozen=True)
class CallerContext:
    """Identity of whoever invokes an engine operation"""
    user_id: str
    is_admin: bool = False


@dataclass
class User(StorageRecord):
    """Application user"""
    username: str
    name: str
    email: str
    is_admin: bool = False
    is_active: bool = True


@dataclass
class Client(StorageRecord):
    """Client company a process runs against"""
    legal_name: str
    tax_id: str
    email: str = ""
    trade_name: Optional[str] = None
    phone: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.trade_name or self.legal_name


class DirectoryProvider(ABC):
    """Read-only view of users and clients"""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    def get_client(self, client_id: str) -> Optional[Client]:
        pass

    def user_exists(self, user_id: Optional[str]) -> bool:
        return bool(user_id) and self.get_user(user_id) is not None

    def user_name(self, user_id: Optional[str]) -> str:
        user = self.get_user(user_id) if user_id else None
        return user.name if user else UNKNOWN_USER

    def client_name(self, client_id: Optional[str]) -> str:
        client = self.get_client(client_id) if client_id else None
        return client.display_name if client else UNKNOWN_CLIENT

    def caller_context(self, user_id: str) -> CallerContext:
        """Resolve an authenticated user id into a CallerContext"""
        user = self.get_user(user_id)
        if not user or not user.is_active:
            raise AuthenticationError("Usuário não autenticado")
        return CallerContext(user_id=user.id, is_admin=user.is_admin)


class StorageDirectory(DirectoryProvider):
    """Directory backed by the ``users`` and ``clients`` tables"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def create_user(self, username: str, name: str, email: str,
                    is_admin: bool = False, user_id: Optional[str] = None) -> User:
        if not username or not name:
            raise ValidationError("Usuário e nome são obrigatórios")
        if self.storage.find('users', {'username': username}):
            raise ValidationError(f"Usuário '{username}' já existe")

        now = datetime.now(timezone.utc)
        user = User(
            id=user_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            username=username,
            name=name,
            email=email,
            is_admin=is_admin
        )
        self.storage.save('users', user.id, user.to_dict())
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        data = self.storage.load('users', user_id)
        return User.from_dict(data) if data else None

    def list_users(self) -> List[User]:
        users = [User.from_dict(data) for data in self.storage.load_all('users')]
        return sorted(users, key=lambda u: u.name)

    def deactivate_user(self, user_id: str) -> User:
        user = self.get_user(user_id)
        if not user:
            raise NotFoundError("Usuário não encontrado")
        user.is_active = False
        user.updated_at = datetime.now(timezone.utc)
        self.storage.save('users', user.id, user.to_dict())
        return user

    def create_client(self, legal_name: str, tax_id: str, email: str = "",
                      trade_name: Optional[str] = None, phone: Optional[str] = None,
                      client_id: Optional[str] = None) -> Client:
        if not legal_name or not tax_id:
            raise ValidationError("Razão social e CNPJ são obrigatórios")
        if self.storage.find('clients', {'tax_id': tax_id}):
            raise ValidationError(f"CNPJ '{tax_id}' já cadastrado")

        now = datetime.now(timezone.utc)
        client = Client(
            id=client_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            legal_name=legal_name,
            tax_id=tax_id,
            email=email,
            trade_name=trade_name,
            phone=phone
        )
        self.storage.save('clients', client.id, client.to_dict())
        return client

    def get_client(self, client_id: str) -> Optional[Client]:
        data = self.storage.load('clients', client_id)
        return Client.from_dict(data) if data else None

    def delete_client(self, client_id: str) -> bool:
        return self.storage.delete('clients', client_id)

    def delete_user(self, user_id: str) -> bool:
        return self.storage.delete('users', user_id)
