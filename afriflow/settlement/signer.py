"""
Transfer authorization signing (EIP-712 TransferWithAuthorization).

The typed payload is bound to the asset domain
{name, version, chainId, verifyingContract}, so a signature made for one
asset or network cannot be replayed against another.

Nonces are 32 random bytes from `secrets`, tracked per signer and domain.
A nonce is never issued twice by the same signer for the same domain.
"""

import secrets
import threading
from typing import Any, Dict, Optional, Set, Tuple

from eth_account import Account
from eth_account.messages import encode_typed_data

from afriflow.config import SettlementConfig
from afriflow.core.exceptions import InvalidSignature, MissingSigningKey
from afriflow.core.models import Authorization, ZERO_ADDRESS, normalize_address
from afriflow.core.time import Clock


TRANSFER_WITH_AUTHORIZATION_TYPES = {
    "TransferWithAuthorization": [
        {"name": "from",        "type": "address"},
        {"name": "to",          "type": "address"},
        {"name": "value",       "type": "uint256"},
        {"name": "validAfter",  "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce",       "type": "bytes32"},
    ],
}

_NONCE_BYTES = 32


def _hex(value: Any) -> str:
    # HexBytes.hex() includes 0x in some versions and not in others
    raw = value.hex()
    return raw if raw.startswith("0x") else "0x" + raw


class AuthorizationSigner:
    """
    Signs TransferWithAuthorization payloads with the service key.

        signer = AuthorizationSigner(private_key, chain_id=338,
                                     asset_contract="0x...")
        auth = signer.sign(sender, recipient, 1_000_000)
    """

    def __init__(
        self,
        private_key:    Optional[str],
        chain_id:       int,
        asset_contract: Optional[str] = None,
        asset_name:     str = "USD Coin",
        asset_version:  str = "2",
        ttl:            int = 3600,
        clock:          Optional[Clock] = None,
    ):
        self._account  = Account.from_key(private_key) if private_key else None
        self.chain_id  = chain_id
        self.contract  = normalize_address(asset_contract) if asset_contract else ZERO_ADDRESS
        self.name      = asset_name
        self.version   = asset_version
        self.ttl       = ttl
        self.clock     = clock or Clock()

        self._nonce_lock = threading.Lock()
        self._used_nonces: Set[Tuple[str, str]] = set()

    @classmethod
    def from_config(cls, config: SettlementConfig, clock: Optional[Clock] = None) -> "AuthorizationSigner":
        return cls(
            private_key=    config.signer_private_key,
            chain_id=       config.chain_id,
            asset_contract= config.asset_contract,
            asset_name=     config.asset_name,
            asset_version=  config.asset_version,
            ttl=            config.authorization_ttl,
            clock=          clock,
        )

    @property
    def has_key(self) -> bool:
        return self._account is not None

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account else None

    @property
    def domain(self) -> Dict[str, Any]:
        return {
            "name":              self.name,
            "version":           self.version,
            "chainId":           self.chain_id,
            "verifyingContract": self.contract,
        }

    @property
    def _domain_key(self) -> str:
        return f"{self.name}/{self.version}/{self.chain_id}/{self.contract}"

    # ── Nonces ────────────────────────────────────────────────

    def _fresh_nonce(self) -> str:
        signer = self.address or ""
        with self._nonce_lock:
            while True:
                nonce = "0x" + secrets.token_bytes(_NONCE_BYTES).hex()
                key = (signer, self._domain_key + nonce)
                if key not in self._used_nonces:
                    self._used_nonces.add(key)
                    return nonce

    # ── Signing ───────────────────────────────────────────────

    def _signable(self, auth_fields: Dict[str, Any]):
        message = {
            "from":        auth_fields["from"],
            "to":          auth_fields["to"],
            "value":       int(auth_fields["value"]),
            "validAfter":  int(auth_fields["validAfter"]),
            "validBefore": int(auth_fields["validBefore"]),
            "nonce":       bytes.fromhex(auth_fields["nonce"].removeprefix("0x")),
        }
        return encode_typed_data(
            domain_data=   self.domain,
            message_types= TRANSFER_WITH_AUTHORIZATION_TYPES,
            message_data=  message,
        )

    def sign(
        self,
        sender:       str,
        recipient:    str,
        value:        int,
        valid_before: Optional[int] = None,
    ) -> Authorization:
        """
        Authorization valid from 0 until now + ttl (or `valid_before`).
        Raises MissingSigningKey when no key is configured.
        """
        if self._account is None:
            raise MissingSigningKey("No signing key configured")

        fields = {
            "from":        normalize_address(sender, field_name="sender"),
            "to":          normalize_address(recipient, field_name="recipient"),
            "value":       value,
            "validAfter":  0,
            "validBefore": valid_before if valid_before is not None else self.clock.now() + self.ttl,
            "nonce":       self._fresh_nonce(),
        }
        signed = self._account.sign_message(self._signable(fields))

        return Authorization(
            from_address= fields["from"],
            to=           fields["to"],
            value=        value,
            valid_after=  fields["validAfter"],
            valid_before= fields["validBefore"],
            nonce=        fields["nonce"],
            signature=    _hex(signed.signature),
        )

    # ── Verification ──────────────────────────────────────────

    def recover(self, authorization: Authorization) -> str:
        """Address that produced the signature, under this signer's domain."""
        signable = self._signable({
            "from":        authorization.from_address,
            "to":          authorization.to,
            "value":       authorization.value,
            "validAfter":  authorization.valid_after,
            "validBefore": authorization.valid_before,
            "nonce":       authorization.nonce,
        })
        try:
            return Account.recover_message(signable, signature=authorization.signature)
        except (ValueError, TypeError) as exc:
            raise InvalidSignature("Malformed authorization signature") from exc

    def verify(self, authorization: Authorization) -> None:
        """Raise InvalidSignature unless this signer produced the authorization."""
        if self._account is None:
            raise MissingSigningKey("No signing key configured")
        if self.recover(authorization) != self._account.address:
            raise InvalidSignature(
                "Authorization not signed by this signer",
                {"nonce": authorization.nonce},
            )

    def __repr__(self) -> str:
        return f"AuthorizationSigner(address={self.address!r}, chain_id={self.chain_id})"
