"""系统提示词与开场白。

build_system_instruction 在每次请求时只计算一次，模板文本固定；
build_greeting 在客户端会话开始时生成，不经过模型。
"""

from typing import List

from resume_core.domain.models import ResumeContext

ROLE_FRAMING = "You are an AI assistant that helps the user resume their thinking."
CONTINUATION = "Build on the conversations the user had before and help them carry their thought forward."

INSTRUCTIONS = (
    "- Answer the user's questions carefully, respecting the previous content and the user's notes.",
    "- When helpful, recap the key points of the earlier discussion while explaining.",
    "- If the user wants to take the discussion in a new direction, follow them flexibly.",
)


def build_system_instruction(context: ResumeContext) -> str:
    """根据上下文生成系统提示词。纯函数，无 I/O。"""

    parts: List[str] = [
        ROLE_FRAMING,
        CONTINUATION,
        "",
        "## Previous content",
        context.summary,
    ]
    if context.title:
        parts.extend(["", f"## Theme: {context.title}"])
    if context.note:
        parts.extend(["", "## User notes", context.note])
    parts.extend(["", "## Instructions", *INSTRUCTIONS])
    return "\n".join(parts)


def build_greeting(context: ResumeContext) -> str:
    """会话开始时展示的开场白（客户端生成）。"""

    title = context.title or "the previous conversation"
    return (
        f"I've gone through \"{title}\". "
        "Is there anything I can help you with, building on that discussion?\n\n"
        "For example:\n"
        "- Organize the key points of the previous discussion\n"
        "- Dig deeper into a specific topic\n"
        "- Discuss a new perspective or question\n\n"
        "Feel free to ask."
    )
