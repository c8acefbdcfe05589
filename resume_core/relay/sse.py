"""流式中继的线格式。

每个事件都是一帧 ``data: <payload>\\n\\n``：

- ``data: {"text": "<fragment>"}``  文本片段，零个或多个
- ``data: [DONE]``                   成功终止帧
- ``data: {"error": "<message>"}``   失败终止帧（与 [DONE] 互斥）

解码端必须容忍一帧被拆到多次网络读取中，并把无法解析的帧当作噪声忽略。
"""

import codecs
import json
from typing import List, Optional

from resume_core.domain.models import DoneEvent, ErrorEvent, StreamEvent, TextEvent

DONE_SENTINEL = "[DONE]"
MEDIA_TYPE = "text/event-stream"


def encode_event(event: StreamEvent) -> bytes:
    if isinstance(event, TextEvent):
        data = json.dumps({"text": event.value}, ensure_ascii=False)
    elif isinstance(event, DoneEvent):
        data = DONE_SENTINEL
    elif isinstance(event, ErrorEvent):
        data = json.dumps({"error": event.message}, ensure_ascii=False)
    else:
        raise TypeError(f"Unsupported stream event: {event!r}")
    return f"data: {data}\n\n".encode("utf-8")


def parse_frame(frame: str) -> Optional[StreamEvent]:
    """解析单个帧（不含结尾空行），无法识别时返回 None。"""

    data_lines = []
    for line in frame.splitlines():
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip(" "))
    if not data_lines:
        return None
    data = "\n".join(data_lines).strip()
    if data == DONE_SENTINEL:
        return DoneEvent()
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    if isinstance(payload.get("error"), str):
        return ErrorEvent(payload["error"])
    if isinstance(payload.get("text"), str):
        return TextEvent(payload["text"])
    return None


class SSEDecoder:
    """增量解码器：按字节喂入，按空行切帧。"""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[StreamEvent]:
        self._buffer += self._decoder.decode(chunk)
        # 兼容 \r\n 换行
        self._buffer = self._buffer.replace("\r\n", "\n")
        events: List[StreamEvent] = []
        while "\n\n" in self._buffer:
            frame, self._buffer = self._buffer.split("\n\n", 1)
            event = parse_frame(frame)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> List[StreamEvent]:
        """流结束时处理残留数据（没有结尾空行的最后一帧）。"""

        self._buffer += self._decoder.decode(b"", final=True)
        frame, self._buffer = self._buffer, ""
        if not frame.strip():
            return []
        event = parse_frame(frame)
        return [event] if event is not None else []
