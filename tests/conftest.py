"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from unittest import mock

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径（开发时）
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture(autouse=True)
def clean_config():
    """每个测试使用不含 RR_* 变量的新配置。"""
    from root_relay.config import reload_config

    env = {k: v for k, v in os.environ.items() if not k.startswith("RR_")}
    with mock.patch.dict(os.environ, env, clear=True):
        reload_config()
        yield
    reload_config()


@pytest.fixture
def fixtures_dir() -> Path:
    """测试 fixture 目录。"""
    return FIXTURES_DIR


@pytest.fixture
def fake_tool() -> tuple[str, ...]:
    """以当前解释器运行 fake_tool.py 的命令前缀。"""
    return (sys.executable, str(FIXTURES_DIR / "fake_tool.py"))


@pytest.fixture
def fake_settings() -> tuple[str, ...]:
    """以当前解释器运行 fake_settings.py 的命令前缀。"""
    return (sys.executable, str(FIXTURES_DIR / "fake_settings.py"))
