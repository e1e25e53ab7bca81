class TFError(Exception):
    """协调层异常基类"""
    def __init__(self, message: str, context: dict | None = None) -> None:
        super().__init__(message)
        self.context = context or {}


class TransientError(TFError):
    """
    可重试的失败。
    存储不可用、SQLite 锁/忙、连接池获取超时等。
    抛给调用方，由调用方退避重试。
    """
    pass


class PermanentError(TFError):
    """
    不可重试的失败，重复调用得到同样的结果。
    """
    pass


class NotFoundError(PermanentError):
    """查询未命中。不致命，由调用方决定是否创建。"""
    pass


class ConflictError(PermanentError):
    """写入与已存在的不同事实冲突（例如账号重复关联）"""
    pass


class InvariantViolation(PermanentError):
    """
    正常运行中不应出现的情况：把会话合并到自身、把消息关联到不存在的任务等。
    绝不静默恢复。
    """
    pass
