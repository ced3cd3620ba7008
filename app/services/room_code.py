"""
app.services.room_code
~~~~~~~~~~~~~~~~~~~~~~

房间码工具 —— 生成、校验 6 位房间码，拼接遥控端入口链接。

中继本身把房间码当作不透明字符串，不做格式校验；格式校验只用于 HTTP 房间详情接口。
"""
from __future__ import annotations

import re
import secrets
import string
from collections.abc import Container
from urllib.parse import urlencode

ROOM_CODE_LENGTH: int = 6
_ROOM_CODE_ALPHABET: str = string.ascii_uppercase + string.digits
_ROOM_CODE_RE = re.compile(r"[A-Z0-9]{6}")


def generate_room_code(taken: Container[str] = ()) -> str:
    """生成一个不在 ``taken`` 中的随机房间码。"""
    while True:
        code = "".join(secrets.choice(_ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))
        if code not in taken:
            return code


def is_valid_room_code(code: str) -> bool:
    """房间码是否为 6 位大写字母或数字。"""
    return bool(_ROOM_CODE_RE.fullmatch(code))


def build_control_url(base_url: str, room_code: str) -> str:
    """拼接遥控端链接：``<base>?room=<code>&mode=control``。"""
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode({'room': room_code, 'mode': 'control'})}"
