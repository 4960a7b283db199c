"""Signed link tokens - HMAC-SHA256 capability tokens for action links.

A token is ``base64url(json claims) + "." + hex signature``. Claims bind
the action id, the purpose, an optional option id and the expiry, so a
token authorizes exactly one kind of transition on one action.
"""

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from mailpilot.common.constants import LinkConstants
from mailpilot.common.exceptions import ConfirmationExpired, ConfirmationInvalid

logger = logging.getLogger(__name__)

PURPOSES = (
    LinkConstants.PURPOSE_CONFIRM,
    LinkConstants.PURPOSE_CANCEL,
    LinkConstants.PURPOSE_CHOOSE,
)


@dataclass(frozen=True)
class LinkClaims:
    action_id: str
    purpose: str
    expires_at: datetime
    option_id: Optional[str] = None


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(s: str) -> bytes:
    pad = "=" * ((4 - (len(s) % 4)) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


class LinkSigner:
    """Issues and verifies link tokens. Verification never reads state."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("A signing secret is required")
        self._key = secret.encode("utf-8")

    def _sign(self, blob: bytes) -> str:
        return hmac.new(self._key, blob, hashlib.sha256).hexdigest()

    def issue(
        self,
        action_id: str,
        purpose: str,
        expires_at: datetime,
        option_id: Optional[str] = None,
    ) -> str:
        if purpose not in PURPOSES:
            raise ValueError(f"Unknown link purpose: {purpose}")
        if purpose == LinkConstants.PURPOSE_CHOOSE and not option_id:
            raise ValueError("choose links require an option_id")

        payload: Dict[str, Any] = {
            "a": action_id,
            "p": purpose,
            "e": int(expires_at.timestamp()),
        }
        if option_id:
            payload["o"] = option_id
        blob = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return f"{_b64url_encode(blob)}.{self._sign(blob)}"

    def verify(self, token: str, now: Optional[datetime] = None) -> LinkClaims:
        """Check signature, then expiry.

        Raises:
            ConfirmationInvalid: Malformed or forged token.
            ConfirmationExpired: Valid signature, past expiry.
        """
        try:
            part, signature = token.split(".", 1)
            blob = _b64url_decode(part)
        except (ValueError, TypeError, AttributeError) as e:
            self._reject("malformed token", token)
            raise ConfirmationInvalid("Malformed link token") from e

        try:
            valid = hmac.compare_digest(self._sign(blob), signature)
        except TypeError:
            # non-ASCII signature text
            valid = False
        if not valid:
            self._reject("bad signature", token)
            raise ConfirmationInvalid("Link signature does not verify")

        try:
            payload = json.loads(blob.decode("utf-8"))
            claims = LinkClaims(
                action_id=str(payload["a"]),
                purpose=str(payload["p"]),
                expires_at=datetime.fromtimestamp(int(payload["e"]), tz=timezone.utc),
                option_id=payload.get("o"),
            )
        except (ValueError, KeyError, TypeError) as e:
            self._reject("bad claims", token)
            raise ConfirmationInvalid("Link claims are malformed") from e

        if claims.purpose not in PURPOSES:
            self._reject("unknown purpose", token)
            raise ConfirmationInvalid(f"Unknown link purpose: {claims.purpose}")

        now = now or datetime.now(timezone.utc)
        if now >= claims.expires_at:
            raise ConfirmationExpired(
                "Link has expired",
                action_id=claims.action_id,
                details={"expires_at": claims.expires_at.isoformat()},
            )

        return claims

    @staticmethod
    def _reject(reason: str, token: str) -> None:
        logger.warning(
            "Security event: rejected action link",
            extra={
                "security_event": "confirmation_invalid",
                "reason": reason,
                "token_fingerprint": hashlib.sha256(str(token).encode("utf-8")).hexdigest()[:12],
            },
        )
