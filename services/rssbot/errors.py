"""
RSS机器人异常定义
"""

from typing import List, Optional


class RSSBotError(Exception):
    """RSS机器人异常基类"""
    pass


class FetchError(RSSBotError):
    """Feed抓取失败（transport: 网络错误, status: 非2xx响应, parse: 内容无法解析）"""

    TRANSPORT = "transport"
    STATUS = "status"
    PARSE = "parse"

    def __init__(self, url: str, kind: str, message: str, status_code: Optional[int] = None):
        self.url = url
        self.kind = kind
        self.status_code = status_code
        super().__init__(f"[{kind}] {url}: {message}")


class DeliveryError(RSSBotError):
    """单个房间的消息发送失败"""

    def __init__(self, room: str, message: str, item_id: Optional[str] = None):
        self.room = room
        self.item_id = item_id
        super().__init__(f"发送到 {room} 失败: {message}")


class ConfigError(RSSBotError):
    """配置校验失败，整个配置变更被拒绝"""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("配置无效: " + "; ".join(self.problems))
