"""Provider 异常

Confidence Scorer 把这里的任何异常都当作"本次打分不可用"，对应提案不会生成任务。
"""


class ProviderError(Exception):
    """模型调用失败"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        super().__init__(message)
        self.recoverable = recoverable


class ProxyUnreachableError(ProviderError):
    """连不上 LiteLLM Proxy（拒绝连接、超时、DNS 失败）"""

    def __init__(self, proxy_url: str, original_error: Exception) -> None:
        super().__init__(
            f"LiteLLM Proxy {proxy_url} unreachable: {type(original_error).__name__}: "
            f"{original_error}",
        )
        self.proxy_url = proxy_url
        self.original_error = original_error
