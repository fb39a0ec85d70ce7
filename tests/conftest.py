"""Pytest 配置"""

import pytest

from termbridge.telemetry import metrics


@pytest.fixture
def anyio_backend():
    """指定 anyio 只使用 asyncio backend"""
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_metrics():
    """每个测试前清空全局指标"""
    metrics.reset()
    yield
    metrics.reset()
