"""领域层模型与协议。

包含：
- models: ChatTurn / ResumeContext / StreamEvent / Insight 等数据结构。
- records: 文档存储协议 DocumentStore 与集合名称。
- exceptions: 业务异常类型定义。
"""
