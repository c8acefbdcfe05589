"""Provider 抽象接口。

中继层不直接依赖具体厂商的 HTTP API，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 GeminiClient、GlmClient）。
- 负责：把 (系统提示词, 历史, 新消息) 转成厂商请求，
  并把流式响应拆成一个个非空文本片段。
- 失败统一抛出分类后的 ProviderError，不向上泄露原始响应或堆栈。
"""

from typing import AsyncIterator, Protocol, Sequence

from resume_core.domain.models import ChatTurn


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - stream_reply(...): 惰性、有限、不可重启的片段序列。
    - aclose(): 释放底层 HTTP 连接池。
    """

    name: str

    def stream_reply(
        self,
        system_instruction: str,
        history: Sequence[ChatTurn],
        new_message: str,
    ) -> AsyncIterator[str]:
        ...

    async def aclose(self) -> None:
        ...


async def collect_reply(
    provider: ProviderClient,
    system_instruction: str,
    history: Sequence[ChatTurn],
    new_message: str,
) -> str:
    """非流式调用：把所有片段拼接为完整回答。"""

    chunks = []
    async for fragment in provider.stream_reply(system_instruction, history, new_message):
        chunks.append(fragment)
    return "".join(chunks)
