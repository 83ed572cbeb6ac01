"""
Decryption Authorizer
=====================

Gates the reveal of a single confidential value behind a wallet signature.

Per attempt:
    IDLE -> CHALLENGE_BUILT -> AWAITING_SIGNATURE -> AUTHORIZED | REJECTED

The challenge is a deterministic, line-ordered message built from the
session parameters:

    publickey:<public key>
    contractAddresses:<contract address>
    contractsChainId:<chain id>
    startTimestamp:<unix seconds>
    durationDays:<days>

With verify_signatures on, the signature must be an EIP-191 personal-message
signature over exactly this text, made by the connected address. With it off,
any signature unlocks the value (legacy web client behaviour).

Each reveal needs a fresh signature; nothing is persisted.
"""

import asyncio
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from eth_account import Account
from eth_account.messages import encode_defunct

from .codec import TokenLike, ValueCodec, get_codec
from .errors import DecodeError
from .schemas import AuthorizationState, ErrorKind

logger = logging.getLogger(__name__)

PUBLIC_KEY_HEX_LENGTH = 2000


# =============================================================================
# External collaborators
# =============================================================================

class WalletProvider(ABC):
    """Identity/signing provider"""

    @abstractmethod
    def connected_address(self) -> Optional[str]:
        """Current connected address, None when no wallet is connected"""
        pass

    @abstractmethod
    async def sign_message(self, message: str) -> str:
        """Hex signature over message. Raises when the user rejects."""
        pass

    def credential_key(self) -> str:
        """
        Identity of the credential behind sign_message.

        Concurrent decrypts share a pending signature only when this matches.
        """
        return f"wallet:{id(self)}"


class ChainProvider(ABC):
    """Chain-identity provider"""

    @abstractmethod
    async def get_chain_id(self) -> int:
        pass


class StaticChainProvider(ChainProvider):
    """Chain id fixed by configuration"""

    def __init__(self, chain_id: int):
        self.chain_id = chain_id

    async def get_chain_id(self) -> int:
        return self.chain_id


class PresignedWallet(WalletProvider):
    """
    Wallet whose signature was produced elsewhere (e.g. by a browser
    wallet) and handed over with the request.
    """

    def __init__(self, address: Optional[str], signature: Optional[str]):
        self.address = address or None
        self.signature = signature

    def connected_address(self) -> Optional[str]:
        return self.address

    async def sign_message(self, message: str) -> str:
        if not self.signature:
            raise PermissionError("No signature supplied for the challenge")
        return self.signature

    def credential_key(self) -> str:
        return f"signature:{(self.signature or '').lower()}"


class LocalAccountWallet(WalletProvider):
    """Wallet backed by an in-process eth-account key (scripts, tests)"""

    def __init__(self, private_key: Optional[str] = None):
        self.account = Account.from_key(private_key) if private_key else Account.create()

    def connected_address(self) -> Optional[str]:
        return self.account.address

    async def sign_message(self, message: str) -> str:
        signed = self.account.sign_message(encode_defunct(text=message))
        return "0x" + signed.signature.hex().removeprefix("0x")


# =============================================================================
# Session context
# =============================================================================

def generate_public_key() -> str:
    """Random 0x-prefixed hex public key (2000 hex digits)"""
    return "0x" + secrets.token_hex(PUBLIC_KEY_HEX_LENGTH // 2)


def build_challenge(
    public_key: str,
    contract_address: str,
    chain_id: int,
    start_timestamp: int,
    duration_days: int,
) -> str:
    """Deterministic challenge message. Field order is fixed."""
    return (
        f"publickey:{public_key}\n"
        f"contractAddresses:{contract_address}\n"
        f"contractsChainId:{chain_id}\n"
        f"startTimestamp:{start_timestamp}\n"
        f"durationDays:{duration_days}"
    )


@dataclass(frozen=True)
class SessionContext:
    """Challenge parameters, created once at startup"""
    public_key: str
    contract_address: str
    chain_id: int
    start_timestamp: int
    duration_days: int = 30

    @classmethod
    def create(
        cls,
        contract_address: str = "",
        chain_id: int = 0,
        duration_days: int = 30,
        start_timestamp: Optional[int] = None,
        public_key: Optional[str] = None,
    ) -> "SessionContext":
        return cls(
            public_key=public_key or generate_public_key(),
            contract_address=contract_address,
            chain_id=chain_id,
            start_timestamp=int(time.time()) if start_timestamp is None else start_timestamp,
            duration_days=duration_days,
        )

    @classmethod
    async def from_providers(
        cls,
        contract_address: str,
        chain: ChainProvider,
        duration_days: int = 30,
    ) -> "SessionContext":
        """Build the context, asking the chain provider for the active chain id"""
        try:
            chain_id = await chain.get_chain_id()
        except Exception as e:
            logger.warning(f"Could not fetch chain id, using 0: {e}")
            chain_id = 0
        return cls.create(contract_address=contract_address, chain_id=chain_id, duration_days=duration_days)

    @property
    def challenge(self) -> str:
        return build_challenge(
            self.public_key,
            self.contract_address,
            self.chain_id,
            self.start_timestamp,
            self.duration_days,
        )


# =============================================================================
# Authorizer
# =============================================================================

@dataclass
class AuthorizationResult:
    """Outcome of one decrypt attempt"""
    state: AuthorizationState
    value: Optional[float] = None
    error_kind: Optional[ErrorKind] = None
    reason: Optional[str] = None
    signature: Optional[str] = None
    transitions: List[AuthorizationState] = field(default_factory=list)

    @property
    def authorized(self) -> bool:
        return self.state == AuthorizationState.AUTHORIZED


def recover_signer(message: str, signature: str) -> str:
    """Address that produced an EIP-191 personal-message signature"""
    return Account.recover_message(encode_defunct(text=message), signature=signature)


class DecryptionAuthorizer:
    """
    Signature-gated decoding of one confidential value.

    Args:
        session: immutable challenge parameters
        wallet: default identity/signing provider
        codec: codec used for the final decode
        delay_seconds: artificial pause before returning a decrypted value
        verify_signatures: check signature against challenge and connected address
    """

    def __init__(
        self,
        session: SessionContext,
        wallet: Optional[WalletProvider] = None,
        codec: Optional[ValueCodec] = None,
        delay_seconds: float = 1.5,
        verify_signatures: bool = True,
    ):
        self.session = session
        self.wallet = wallet
        self.codec = codec or get_codec()
        self.delay_seconds = delay_seconds
        self.verify_signatures = verify_signatures
        self._inflight: Dict[Tuple[str, str, str], "asyncio.Future[AuthorizationResult]"] = {}

    def build_challenge(self) -> str:
        return self.session.challenge

    async def authorize(
        self,
        token: TokenLike,
        testimony_id: Optional[str] = None,
        wallet: Optional[WalletProvider] = None,
    ) -> AuthorizationResult:
        """
        Obtain a signature over the challenge, then decode token.

        Concurrent calls for the same testimony, address and credential
        share one signature request.
        """
        wallet = wallet or self.wallet
        address = wallet.connected_address() if wallet is not None else None
        if not address:
            logger.info("Decrypt refused: no wallet connected")
            return AuthorizationResult(
                state=AuthorizationState.REJECTED,
                error_kind=ErrorKind.NOT_CONNECTED,
                reason="Please connect wallet first",
                transitions=[AuthorizationState.IDLE, AuthorizationState.REJECTED],
            )

        if testimony_id is None:
            return await self._run(token, wallet, address)

        key = (testimony_id, address.lower(), wallet.credential_key())
        pending = self._inflight.get(key)
        if pending is not None:
            logger.info(f"Decrypt of {testimony_id} already in flight - joining it")
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._run(token, wallet, address))
        self._inflight[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    async def _run(self, token: TokenLike, wallet: WalletProvider, address: str) -> AuthorizationResult:
        transitions = [AuthorizationState.IDLE]

        def reject(kind: ErrorKind, reason: str, signature: Optional[str] = None) -> AuthorizationResult:
            transitions.append(AuthorizationState.REJECTED)
            return AuthorizationResult(
                state=AuthorizationState.REJECTED,
                error_kind=kind,
                reason=reason,
                signature=signature,
                transitions=transitions,
            )

        message = self.build_challenge()
        transitions.append(AuthorizationState.CHALLENGE_BUILT)

        transitions.append(AuthorizationState.AWAITING_SIGNATURE)
        try:
            signature = await wallet.sign_message(message)
        except Exception as e:
            logger.warning(f"Signature request failed for {address}: {e}")
            return reject(ErrorKind.SIGNING_REJECTED, str(e) or e.__class__.__name__)

        if not signature:
            return reject(ErrorKind.SIGNING_REJECTED, "Wallet returned an empty signature")

        if self.verify_signatures:
            try:
                signer = recover_signer(message, signature)
            except Exception as e:
                logger.warning(f"Unreadable signature from {address}: {e}")
                return reject(ErrorKind.SIGNATURE_INVALID, f"Invalid signature: {e}", signature)
            if signer.lower() != address.lower():
                logger.warning(f"Signature signer {signer} does not match connected address {address}")
                return reject(
                    ErrorKind.SIGNATURE_INVALID,
                    f"Signature was made by {signer}, not {address}",
                    signature,
                )

        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

        try:
            value = self.codec.decode(token)
        except DecodeError as e:
            logger.error(f"Decryption failed: {e}")
            return reject(ErrorKind.DECODE_ERROR, str(e), signature)

        transitions.append(AuthorizationState.AUTHORIZED)
        logger.info(f"Decrypt authorized for {address}")
        return AuthorizationResult(
            state=AuthorizationState.AUTHORIZED,
            value=value,
            signature=signature,
            transitions=transitions,
        )
