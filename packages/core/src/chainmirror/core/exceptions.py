"""同步引擎异常体系

所有异常继承 MirrorError，recoverable 标记该失败能否通过重试
（下一轮 backfill / verify / monitor）自行恢复。
"""


class MirrorError(Exception):
    """chainmirror 基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class ChainConnectionError(MirrorError):
    """网络不可达（连接失败、RPC 断开、网络未配置或初始化失败）

    监听器遇到此异常时进入退避重连，其他网络不受影响。
    """

    def __init__(
        self,
        chain_id: int | None,
        message: str,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(f"chain {chain_id}: {message}", recoverable=True)
        self.chain_id = chain_id
        self.original_error = original_error


class ChainTimeoutError(ChainConnectionError):
    """链上读取超时，可重试"""


class ChainQueryError(MirrorError):
    """RPC 返回业务错误（非连接类），如 get_logs 结果过多"""

    def __init__(self, chain_id: int | None, message: str) -> None:
        super().__init__(f"chain {chain_id}: {message}", recoverable=True)
        self.chain_id = chain_id


class DecodeError(MirrorError):
    """日志无法解码为已知事件 -- 跳过并记录，不中断监听"""

    def __init__(self, message: str) -> None:
        super().__init__(message, recoverable=False)


class ReconcileError(MirrorError):
    """持久化写入失败 -- 镜像标记为 error，等待下一轮重试"""

    def __init__(self, chain_id: int, blockchain_id: str, message: str) -> None:
        super().__init__(
            f"reconcile failed for ({chain_id}, {blockchain_id}): {message}",
            recoverable=True,
        )
        self.chain_id = chain_id
        self.blockchain_id = blockchain_id


class NotFoundError(MirrorError):
    """请求的记录不存在（本地镜像或链上任务）"""

    def __init__(self, message: str, on_chain: bool = False) -> None:
        super().__init__(message, recoverable=False)
        self.on_chain = on_chain


class DuplicateKeyError(MirrorError):
    """(chain_id, blockchain_id) 唯一键冲突

    表示与另一条并发写入路径的良性竞争，调用方按无操作成功处理。
    """

    def __init__(self, chain_id: int, blockchain_id: str) -> None:
        super().__init__(
            f"mirror ({chain_id}, {blockchain_id}) already exists",
            recoverable=True,
        )
        self.chain_id = chain_id
        self.blockchain_id = blockchain_id


class MirrorVanishedError(MirrorError):
    """按 mirror_id 更新时行已不存在（例如被过期 error 清理删除）

    写入已回滚，调用方可重新按插入处理。
    """

    def __init__(self, chain_id: int, blockchain_id: str, mirror_id: str) -> None:
        super().__init__(
            f"mirror {mirror_id} ({chain_id}, {blockchain_id}) vanished before update",
            recoverable=True,
        )
        self.chain_id = chain_id
        self.blockchain_id = blockchain_id
        self.mirror_id = mirror_id
