"""Resume Core 顶层包。

该包提供“思考再开”流式引擎的实现：从保存的对话或空间构建上下文，
把 LLM 的回答以 SSE 帧流式转发给客户端，客户端状态机负责渲染与收尾，
并可把问答对保存为洞察。
"""

from resume_core.api.server import create_app

__all__ = ["create_app"]
