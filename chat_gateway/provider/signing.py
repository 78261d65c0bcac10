"""
签名函数（signing oracle）的装载与调用。

签名算法本身不在网关内实现：部署方通过 SIGNER=module:attr 提供一个
``sign(nonce, timestamp, device_id, content) -> str`` 可调用对象。
该函数会被多个并发请求同时调用，必须是无共享状态或线程安全的。
"""

from __future__ import annotations

import importlib
from typing import Callable

from chat_gateway.errors import ConfigurationError, SigningError
from chat_gateway.logging_config import logger

Signer = Callable[[str, str, str, str], str]


def load_signer(path: str | None) -> Signer | None:
    """
    按 "package.module:attr" 导入签名函数；未配置时返回 None。
    """
    if not path:
        return None
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(
            f"Invalid SIGNER '{path}'. Expected 'package.module:function'"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import signer module '{module_name}': {exc}") from exc
    signer = getattr(module, attr, None)
    if not callable(signer):
        raise ConfigurationError(f"Signer '{path}' is not callable")
    logger.info("Loaded request signer %s", path)
    return signer


def sign_request(
    signer: Signer,
    *,
    nonce: str,
    timestamp: str,
    device_id: str,
    content: str,
) -> str:
    try:
        signature = signer(nonce, timestamp, device_id, content)
    except Exception as exc:
        logger.error("Request signing failed: %s", exc)
        raise SigningError(f"Failed to sign request: {exc}") from exc
    if not isinstance(signature, str) or not signature:
        raise SigningError("Signing oracle returned an empty signature")
    return signature


__all__ = ["Signer", "load_signer", "sign_request"]
