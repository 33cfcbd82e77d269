"""
配置模型

使用 Pydantic v2 进行类型检查和约束验证。
"""
from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from pydantic import BaseModel, Field, field_validator

from hotplug import settings
from hotplug.utils import is_supported_algorithm


class DependencyOptions(BaseModel):
    """依赖节点的配置包

    enabled / priority 之外的任意字段都会原样保留。
    """
    model_config = {"extra": "allow", "validate_assignment": True}

    enabled: bool = True
    priority: int = 0

    def merged(self, patch: Dict[str, Any]) -> "DependencyOptions":
        data = self.model_dump()
        data.update(patch)
        return DependencyOptions.model_validate(data)


class HmrConfig(BaseModel):
    """宿主运行时配置

    对应配置文件的顶层结构，或其中的 [hotplug] 段。
    """
    model_config = {"extra": "allow"}

    name: str = Field(default="hotplug", min_length=1)
    dirs: List[Path] = Field(default_factory=list)
    plugins: List[Path] = Field(default_factory=list)
    extensions: Set[str] = Field(default_factory=lambda: set(settings.WATCH_EXTENSIONS))
    hash_algorithm: str = settings.HASH_ALGORITHM
    debounce: float = Field(default=settings.WATCH_DEBOUNCE, ge=0)
    dispatch_hops: int = Field(default=settings.DISPATCH_HOPS, ge=0)
    debug: bool = settings.DEBUG

    @field_validator("extensions", mode="before")
    @classmethod
    def normalize_extensions(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [v]
        if isinstance(v, (list, tuple, set, frozenset)):
            out = set()
            for item in v:
                item = str(item).strip()
                if not item:
                    continue
                out.add(item if item.startswith(".") else f".{item}")
            return out
        return v

    @field_validator("hash_algorithm")
    @classmethod
    def validate_hash_algorithm(cls, v: str) -> str:
        v = v.strip().lower()
        if not is_supported_algorithm(v):
            raise ValueError(f"不支持的哈希算法: {v}")
        return v


def load_config(path: Union[str, Path], overrides: Optional[Dict[str, Any]] = None) -> HmrConfig:
    """从 TOML 文件读取 HmrConfig

    相对路径的 dirs / plugins 以配置文件所在目录为基准。

    Raises:
        FileNotFoundError: 文件不存在
        pydantic.ValidationError: 配置不合法
    """
    path = Path(path)
    with path.open("rb") as f:
        data = tomllib.load(f)
    section = data.get("hotplug", data)
    if not isinstance(section, dict):
        raise ValueError(f"[hotplug] 段格式错误: {path}")
    section = dict(section)
    if overrides:
        section.update(overrides)

    base = path.parent
    for key in ("dirs", "plugins"):
        items = section.get(key)
        if isinstance(items, (list, tuple)):
            section[key] = [p if Path(p).is_absolute() else base / p for p in items]
    return HmrConfig.model_validate(section)


__all__ = ["DependencyOptions", "HmrConfig", "load_config"]
