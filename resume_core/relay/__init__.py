"""流式中继：ID 校验、SSE 线格式与事件产出。

- validation: 文档 ID 格式校验。
- sse: StreamEvent 的编码与增量解码。
- service: ChatRelay，保证每个流恰好一个终止事件。
"""
