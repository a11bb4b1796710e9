"""
Gateway credential store.

Credentials are stored encrypted and decrypted only when an adapter is built.
Resolution for (owner, gateway):

1. the owner's own row for that gateway, if one exists (must be active)
2. otherwise the oldest active row for that gateway (the store default)

    match await store.resolve(owner_id, GatewayName.RAZORPAY):
        case Ok(creds):
            ...
        case Error(GatewayNotConfigured() as e):
            ...
"""

from __future__ import annotations

from dataclasses import dataclass

from kungfu import Error, Ok, Result
from pydantic import SecretStr
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement._errors import Errors, GatewayError
from settlement._log import get_logger, mask_secret
from settlement._types import utcnow
from settlement.db import GatewayCredential
from settlement.gateway._crypto import DecryptionError, decrypt, derive_key, encrypt
from settlement.gateway._types import Credentials, GatewayName

log = get_logger("gateway.credentials")


@dataclass(frozen=True, slots=True)
class CredentialSummary:
    """Safe-to-display view of a credential row."""

    gateway: GatewayName
    owner_id: str | None
    key_id: str
    masked_secret: str
    mode: str
    is_active: bool


class CredentialStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        encryption_key: SecretStr,
    ) -> None:
        self._session_factory = session_factory
        self._encryption_key = encryption_key

    def _key(self) -> bytes:
        return derive_key(self._encryption_key.get_secret_value())

    async def _find(
        self, session: AsyncSession, owner_id: str | None, gateway: GatewayName
    ) -> GatewayCredential | None:
        if owner_id is not None:
            own = (
                await session.execute(
                    select(GatewayCredential).where(
                        GatewayCredential.owner_id == owner_id,
                        GatewayCredential.gateway == gateway.value,
                    )
                )
            ).scalar_one_or_none()
            if own is not None:
                return own

        return (
            await session.execute(
                select(GatewayCredential)
                .where(
                    GatewayCredential.gateway == gateway.value,
                    GatewayCredential.is_active.is_(True),
                )
                .order_by(GatewayCredential.created_at, GatewayCredential.id)
                .limit(1)
            )
        ).scalar_one_or_none()

    async def resolve(
        self, owner_id: str | None, gateway: GatewayName
    ) -> Result[Credentials, GatewayError]:
        async with self._session_factory() as session:
            row = await self._find(session, owner_id, gateway)

        if row is None or not row.is_active:
            log.warning("gateway_not_configured", gateway=gateway.value, owner_id=owner_id)
            return Error(Errors.gateway_not_configured(gateway.value))

        try:
            secret = decrypt(row.encrypted_secret, self._key())
        except (DecryptionError, ValueError):
            log.error("gateway_credentials_unreadable", gateway=gateway.value, owner_id=row.owner_id)
            return Error(Errors.credentials_unreadable(gateway.value))

        return Ok(
            Credentials(
                gateway=gateway,
                key_id=row.key_id,
                secret=SecretStr(secret),
                mode=row.mode,
                owner_id=row.owner_id,
                salt_index=row.salt_index,
            )
        )

    async def configure(
        self,
        *,
        gateway: GatewayName,
        key_id: str,
        secret: SecretStr,
        owner_id: str | None = None,
        mode: str = "test",
        salt_index: str | None = None,
        is_active: bool = True,
    ) -> CredentialSummary:
        """Create or replace the (owner, gateway) credential set."""
        encrypted = encrypt(secret.get_secret_value(), self._key())
        async with self._session_factory() as session, session.begin():
            row = (
                await session.execute(
                    select(GatewayCredential).where(
                        GatewayCredential.owner_id.is_(None)
                        if owner_id is None
                        else GatewayCredential.owner_id == owner_id,
                        GatewayCredential.gateway == gateway.value,
                    )
                )
            ).scalar_one_or_none()
            if row is None:
                row = GatewayCredential(owner_id=owner_id, gateway=gateway.value)
                session.add(row)
            row.key_id = key_id
            row.encrypted_secret = encrypted
            row.mode = mode
            row.salt_index = salt_index
            row.is_active = is_active
            row.updated_at = utcnow()

        log.info("gateway_configured", gateway=gateway.value, owner_id=owner_id, mode=mode)
        return CredentialSummary(
            gateway=gateway,
            owner_id=owner_id,
            key_id=key_id,
            masked_secret=mask_secret(secret.get_secret_value()),
            mode=mode,
            is_active=is_active,
        )

    async def describe(
        self, owner_id: str | None, gateway: GatewayName
    ) -> Result[CredentialSummary, GatewayError]:
        match await self.resolve(owner_id, gateway):
            case Ok(creds):
                return Ok(
                    CredentialSummary(
                        gateway=gateway,
                        owner_id=creds.owner_id,
                        key_id=creds.key_id,
                        masked_secret=mask_secret(creds.secret.get_secret_value()),
                        mode=creds.mode,
                        is_active=True,
                    )
                )
            case Error(e):
                return Error(e)


__all__ = ("CredentialSummary", "CredentialStore")
