"""Кэш данных бронирования (слоты, занятость дней)

Экземпляр создаёт и передаёт вызывающий код; глобального состояния нет.
Ключи - кортежи, первый элемент всегда profile_id, чтобы инвалидировать
всё, что относится к профилю, после любой записи/отмены.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Hashable, Tuple

from cachetools import TTLCache

from config import CACHE_MAX_SIZE, CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)

_MISSING = object()


class BookingCache:
    """TTL-кэш с явной инвалидацией по профилю"""

    def __init__(
        self,
        ttl: float = CACHE_TTL_SECONDS,
        maxsize: int = CACHE_MAX_SIZE,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)

    @staticmethod
    def make_key(profile_id: str, kind: str, *parts: Hashable) -> Tuple:
        return (str(profile_id), kind, *parts)

    def get(self, key: Tuple, default: Any = None) -> Any:
        return self._cache.get(key, default)

    def set(self, key: Tuple, value: Any) -> None:
        self._cache[key] = value

    def invalidate(self, key: Tuple) -> None:
        self._cache.pop(key, None)

    def invalidate_profile(self, profile_id: str) -> int:
        """Удалить все ключи профиля

        Returns:
            Количество удалённых ключей
        """
        profile_key = str(profile_id)
        keys = [key for key in list(self._cache.keys()) if key[0] == profile_key]
        for key in keys:
            self._cache.pop(key, None)

        if keys:
            logger.debug(f"Cache invalidated for profile {profile_key}: {len(keys)} keys")
        return len(keys)

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    async def get_or_load(
        self,
        key: Tuple,
        loader: Callable[[], Awaitable[Any]],
        force: bool = False,
    ) -> Any:
        """Вернуть значение из кэша или загрузить и сохранить его

        Args:
            key: Ключ кэша
            loader: Асинхронная функция загрузки
            force: Игнорировать кэш (например, перед записью)
        """
        if not force:
            cached = self._cache.get(key, _MISSING)
            if cached is not _MISSING:
                return cached

        value = await loader()
        self._cache[key] = value
        return value
