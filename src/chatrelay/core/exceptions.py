"""ChatRelay 异常体系

每个异常携带 client_message，命令处理器把它原样放进频道错误 payload。
"""


class RelayError(Exception):
    """ChatRelay 基础异常"""

    client_message: str = "Request failed"

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述（写入日志，不直接暴露给客户端）
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class Unauthorized(RelayError):
    """凭证缺失或无效 -- 只在授权关卡抛出，连接被拒绝"""

    client_message = "Token validation failed"

    def __init__(self, message: str) -> None:
        super().__init__(message, recoverable=False)


class InvalidCredential(RelayError):
    """凭证校验失败（签名、格式、过期）

    由 CredentialValidator 抛出，授权关卡将其转换为 Unauthorized。
    """

    def __init__(self, cause: str) -> None:
        super().__init__(cause, recoverable=False)
        self.cause = cause


class InvalidArgument(RelayError):
    """消息内容为空或输入格式错误"""

    client_message = "Invalid message content"

    def __init__(self, message: str = "Message content cannot be empty") -> None:
        super().__init__(message, recoverable=False)


class NotFound(RelayError):
    """引用的消息不存在"""

    client_message = "Chat message not found"

    def __init__(self, chat_id: str) -> None:
        super().__init__(f"Chat message not found: {chat_id}", recoverable=False)
        self.chat_id = chat_id


class Forbidden(RelayError):
    """非作者尝试修改或删除消息"""

    client_message = "Permission denied"

    def __init__(self, chat_id: str, identity: str) -> None:
        super().__init__(
            f"{identity} is not the author of message {chat_id}",
            recoverable=False,
        )
        self.chat_id = chat_id
        self.identity = identity


class DeliveryFailure(RelayError):
    """Broker 发布或本地扇出失败"""

    client_message = "Failed to send message"

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message, recoverable=True)
        self.original_error = original_error


class ResourceError(RelayError):
    """队列声明、绑定或删除失败"""

    client_message = "Failed to send message"

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message, recoverable=True)
        self.original_error = original_error


class SerializationError(RelayError):
    """Broker 投递的 payload 无法反序列化（仅在 Consumer Relay 内部出现）"""

    def __init__(self, message: str) -> None:
        super().__init__(message, recoverable=False)
