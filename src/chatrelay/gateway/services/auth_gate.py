"""AuthorizationGate -- 入站帧授权关卡

CONNECT 与 SEND 帧必须携带 Authorization: Bearer <token>，
校验通过后身份绑定到会话；其他帧不做检查直接放行。
会话身份一经绑定不可更改。
"""

import structlog
from chatrelay.core.exceptions import InvalidCredential, Unauthorized
from chatrelay.core.models import AUTHENTICATED_COMMANDS, Frame, FrameCommand
from chatrelay.core.store.protocols import CredentialValidator
from ulid import ULID

log = structlog.get_logger()

BEARER_PREFIX = "Bearer "


class Session:
    """客户端会话"""

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id = session_id or str(ULID())
        self._identity: str | None = None

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def authenticated(self) -> bool:
        return self._identity is not None

    def bind(self, identity: str) -> None:
        """绑定身份；已绑定且不一致时拒绝"""
        if self._identity is None:
            self._identity = identity
        elif self._identity != identity:
            raise Unauthorized("credential identity does not match session")


class AuthorizationGate:
    """帧授权关卡"""

    def __init__(self, validator: CredentialValidator) -> None:
        self._validator = validator

    def inspect(self, frame: Frame, session: Session) -> Frame:
        """检查入站帧

        Returns:
            原帧（放行）

        Raises:
            Unauthorized: 凭证缺失、格式错误或校验失败
        """
        if frame.command not in AUTHENTICATED_COMMANDS:
            return frame

        header = frame.header("Authorization")
        if not header or not header.startswith(BEARER_PREFIX):
            log.warning(
                "frame_rejected",
                command=frame.command,
                session_id=session.session_id,
                reason="missing_or_malformed_credential",
            )
            raise Unauthorized("missing or malformed credential")

        token = header[len(BEARER_PREFIX):].strip()
        try:
            identity = self._validator.validate(token)
        except InvalidCredential as e:
            log.warning(
                "frame_rejected",
                command=frame.command,
                session_id=session.session_id,
                reason=e.cause,
            )
            raise Unauthorized(f"invalid credential: {e.cause}") from e

        session.bind(identity)
        if frame.command == FrameCommand.CONNECT:
            log.info(
                "session_authenticated",
                session_id=session.session_id,
                identity=identity,
            )
        return frame
