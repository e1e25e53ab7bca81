import asyncio
import logging
import random
import functools
from typing import Callable, Any, TypeVar, Coroutine, Optional
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError

from core.exceptions import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_MARKERS = ("locked", "busy", "unable to open", "disk i/o")
# 引用的行刚被并发的合并删除，重新解析 id 后即可成功
_STALE_REFERENCE_MARKER = "foreign key constraint failed"


def is_transient_db_error(exc: BaseException) -> bool:
    if isinstance(exc, PoolTimeoutError):
        return True
    if isinstance(exc, OperationalError):
        text = str(exc).lower()
        return any(marker in text for marker in _TRANSIENT_MARKERS)
    if isinstance(exc, IntegrityError):
        return _STALE_REFERENCE_MARKER in str(exc).lower()
    return False


def translate_db_errors(func: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., Coroutine[Any, Any, T]]:
    """
    把存储层的锁/忙/连接池超时，以及指向已被合并删除的行的外键失败，
    统一转成 TransientError。此处不重试，重试策略由调用方决定。
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> T:
        try:
            return await func(*args, **kwargs)
        except (OperationalError, IntegrityError, PoolTimeoutError) as e:
            if is_transient_db_error(e):
                raise TransientError(
                    f"{func.__qualname__}: 存储暂时不可用",
                    context={"error": str(e)},
                ) from e
            raise
    return wrapper


def retry_on_db_lock(
    retries: Optional[int] = None,
    initial_delay: float = 0.5,
    max_delay: float = 5.0,
    backoff_factor: float = 2.0
):
    """
    调用方对 TransientError 的重试，指数退避加随机抖动。

    用法:
        @retry_on_db_lock(retries=3)
        async def on_event(data):
            ...
    """
    def decorator(func: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., Coroutine[Any, Any, T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            if retries is None:
                from core.config import settings
                attempts = settings.DB_LOCK_RETRIES
            else:
                attempts = retries
            attempts = max(1, attempts)
            delay = initial_delay

            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)
                except TransientError as e:
                    if attempt >= attempts - 1:
                        logger.error(f"[DB-LOCK] {func.__qualname__} 重试 {attempts} 次后仍失败: {e}")
                        raise
                    sleep_time = delay + (random.random() * delay * 0.1)
                    logger.warning(
                        f"[DB-LOCK] {func.__qualname__} 瞬时失败 "
                        f"(第 {attempt + 1}/{attempts} 次)，{sleep_time:.2f}s 后重试: {e}"
                    )
                    await asyncio.sleep(sleep_time)
                    delay = min(delay * backoff_factor, max_delay)

        return wrapper
    return decorator
