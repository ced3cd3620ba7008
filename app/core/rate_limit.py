"""
app.core.rate_limit
~~~~~~~~~~~~~~~~~~~

HTTP 接口的限流配置。

WebSocket 上的控制消息不限流：翻页指令必须按到达顺序全部生效。
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

# 基于客户端 IP 地址进行限流，进程内存存储
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)
