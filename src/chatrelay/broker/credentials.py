"""JwtCredentialValidator -- HMAC 签名 JWT 校验

只校验，不签发（凭证签发由外部认证服务负责）。
支持 HS256 / HS384 / HS512，校验签名、exp / nbf，
并从指定 claim（默认 email）中取出身份。
"""

import base64
import binascii
import hashlib
import hmac
import json
import time
from collections.abc import Callable

from chatrelay.core.exceptions import InvalidCredential

_ALGORITHMS = {
    "HS256": hashlib.sha256,
    "HS384": hashlib.sha384,
    "HS512": hashlib.sha512,
}


def _b64u_dec(s: str) -> bytes:
    return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))


class JwtCredentialValidator:
    """HMAC JWT 校验器"""

    def __init__(
        self,
        secret_b64: str,
        identity_claim: str = "email",
        leeway_s: int = 30,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            secret_b64: base64 编码的 HMAC 密钥
            identity_claim: 作为身份的 claim 名称
            leeway_s: exp / nbf 校验允许的时钟偏差（秒）
            clock: 当前时间函数（秒），测试时可注入

        Raises:
            ValueError: 密钥为空或不是合法 base64
        """
        if not secret_b64:
            raise ValueError("JWT secret is not configured")
        try:
            self._key = base64.b64decode(secret_b64, validate=True)
        except binascii.Error as e:
            raise ValueError(f"JWT secret is not valid base64: {e}") from e
        self._identity_claim = identity_claim
        self._leeway_s = leeway_s
        self._clock = clock

    def validate(self, token: str) -> str:
        """校验 JWT 并返回身份

        Raises:
            InvalidCredential: 格式、签名、有效期或身份 claim 不合法
        """
        parts = token.split(".")
        if len(parts) != 3:
            raise InvalidCredential("malformed token")
        header_b64, claims_b64, signature_b64 = parts

        try:
            header = json.loads(_b64u_dec(header_b64))
            claims = json.loads(_b64u_dec(claims_b64))
            signature = _b64u_dec(signature_b64)
        except (ValueError, binascii.Error) as e:
            raise InvalidCredential(f"malformed token: {e}") from e
        if not isinstance(header, dict) or not isinstance(claims, dict):
            raise InvalidCredential("malformed token")

        digest = _ALGORITHMS.get(header.get("alg", ""))
        if digest is None:
            raise InvalidCredential(f"unsupported algorithm: {header.get('alg')}")

        signing_input = f"{header_b64}.{claims_b64}".encode()
        expected = hmac.new(self._key, signing_input, digest).digest()
        if not hmac.compare_digest(signature, expected):
            raise InvalidCredential("signature mismatch")

        now = self._clock()
        exp = self._numeric_claim(claims, "exp")
        if exp is not None and now > exp + self._leeway_s:
            raise InvalidCredential("token expired")
        nbf = self._numeric_claim(claims, "nbf")
        if nbf is not None and now < nbf - self._leeway_s:
            raise InvalidCredential("token not yet valid")

        identity = claims.get(self._identity_claim)
        if not isinstance(identity, str) or not identity:
            raise InvalidCredential(f"missing {self._identity_claim} claim")
        return identity

    @staticmethod
    def _numeric_claim(claims: dict, name: str) -> float | None:
        value = claims.get(name)
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidCredential(f"invalid {name} claim")
        return float(value)
