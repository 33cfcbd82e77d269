"""Shared pytest configuration and fixtures."""
import textwrap
from pathlib import Path

import pytest

from hotplug.core.dependency import Dependency


def pytest_addoption(parser):
    parser.addoption(
        "--run-manual",
        action="store_true",
        default=False,
        help="run manual tests that rely on real file system notifications",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "manual: relies on real file system notifications and timing")


def pytest_collection_modifyitems(config, items):
    if not config.getoption("--run-manual", default=False):
        skip = pytest.mark.skip(reason="needs --run-manual to run")
        for item in items:
            if "manual" in item.keywords:
                item.add_marker(skip)


class Host(Dependency):
    """测试用根节点：子节点直接使用 Dependency"""

    def create_dependency(self, name, filename, options=None):
        return Dependency(self, name, filename, options)


@pytest.fixture
def host():
    root = Host(None, "host", "host.py")
    yield root
    root.dispose()


@pytest.fixture
def write_plugin(tmp_path):
    """在 tmp_path 下写一个插件文件，返回其路径"""

    def _write(name: str, source: str = "", directory: Path = None) -> Path:
        target_dir = directory or tmp_path
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / name
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return path

    return _write
