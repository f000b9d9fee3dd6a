"""ChatRelay Broker -- 外部能力适配层

消息代理、指纹缓存、凭证校验的具体实现与配置加载。
"""

from .cache import MemoryFingerprintCache, RedisFingerprintCache

# 配置
from .config import BrokerConfig, load_broker_config
from .credentials import JwtCredentialValidator
from .memory import MemoryBrokerGateway, MemorySubscription, topic_matches
from .rabbitmq import RabbitBrokerGateway, RabbitSubscription


def create_broker_gateway(config: BrokerConfig):
    """按 broker_mode 创建 Broker Gateway"""
    if config.broker_mode == "memory":
        return MemoryBrokerGateway()
    return RabbitBrokerGateway(
        amqp_url=config.amqp_url,
        exchange=config.exchange,
        timeout_s=config.timeout_s,
        prefetch=config.prefetch,
    )


def create_fingerprint_cache(config: BrokerConfig):
    """按 cache_mode 创建指纹缓存"""
    if config.cache_mode == "memory":
        return MemoryFingerprintCache()
    return RedisFingerprintCache(config.redis_url)


__all__ = [
    "BrokerConfig",
    "load_broker_config",
    "create_broker_gateway",
    "create_fingerprint_cache",
    "MemoryBrokerGateway",
    "MemorySubscription",
    "RabbitBrokerGateway",
    "RabbitSubscription",
    "topic_matches",
    "MemoryFingerprintCache",
    "RedisFingerprintCache",
    "JwtCredentialValidator",
]
