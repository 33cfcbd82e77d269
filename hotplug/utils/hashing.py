"""
文件指纹工具

加载器用内容哈希区分真实修改和文件系统噪声（touch、保存未修改的文件等）。
"""
from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Union


def is_supported_algorithm(algorithm: str) -> bool:
    return algorithm.lower() in hashlib.algorithms_available


def content_hash(data: Union[bytes, str], algorithm: str = "sha256") -> str:
    """计算内容的十六进制摘要"""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.new(algorithm.lower(), data).hexdigest()


def file_hash(path: Union[str, Path], algorithm: str = "sha256") -> str:
    """读取文件并计算摘要

    Raises:
        FileNotFoundError: 文件不存在
    """
    return content_hash(Path(path).read_bytes(), algorithm)
