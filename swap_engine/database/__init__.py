from swap_engine.database.postgres import OrderStore
from swap_engine.database.redis_client import RedisManager

__all__ = ["OrderStore", "RedisManager"]
