"""
统一错误码定义

运行时抛出的所有异常都携带一个 ErrorCode，便于宿主统一上报。

分类：
- 0: 成功
- 4xx / 5xx: 通用错误（与 HTTP 语义对齐）
- 1xxx: Context 错误
- 11xx: 依赖节点错误
- 12xx: 生命周期（挂载 / 销毁）错误
- 13xx: 加载器错误
"""
from __future__ import annotations

from enum import IntEnum
from typing import Dict


class ErrorCode(IntEnum):
    """统一错误码枚举"""
    SUCCESS = 0

    VALIDATION_ERROR = 400
    NOT_FOUND = 404
    CONFLICT = 409
    INTERNAL = 500
    NOT_READY = 503

    # Context 错误
    CONTEXT_NOT_FOUND = 1001
    CONTEXT_NOT_READY = 1002
    CONTEXT_CONFLICT = 1003
    CONTEXT_TYPE_MISMATCH = 1004

    # 依赖节点错误
    DEPENDENCY_DISPOSED = 1101
    DEPENDENCY_CONFLICT = 1102
    LIFECYCLE_TRANSITION = 1103

    # 生命周期错误
    MOUNT_FAILED = 1201
    DISPOSE_FAILED = 1202

    # 加载器错误
    MODULE_NOT_FOUND = 1301
    MODULE_IMPORT_FAILED = 1302
    LOADER_DISPOSED = 1303

    @classmethod
    def from_string(cls, name: str) -> "ErrorCode":
        """从字符串名称获取错误码

        Raises:
            ValueError: 如果名称无效
        """
        try:
            return cls[name.upper()]
        except KeyError as err:
            raise ValueError(f"Unknown error code: {name}") from err


# 错误码名称映射（用于序列化）
ERROR_NAMES: Dict[ErrorCode, str] = {member: member.name for member in ErrorCode}


def get_error_name(code: ErrorCode) -> str:
    """获取错误码的字符串名称"""
    return ERROR_NAMES.get(code, code.name)


__all__ = [
    "ErrorCode",
    "ERROR_NAMES",
    "get_error_name",
]
