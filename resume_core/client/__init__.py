"""客户端：流式消费状态机与洞察提取。"""

from resume_core.client.consumer import GREETING_ID, ChatSession, ConsumerState, create_http_client
from resume_core.client.insights import Ack, InsightExtractor

__all__ = ["GREETING_ID", "ChatSession", "ConsumerState", "create_http_client", "Ack", "InsightExtractor"]
