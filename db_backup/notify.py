"""Feishu webhook notifications about backup runs."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional

import requests

from .config import FeishuConfig

if TYPE_CHECKING:  # pragma: no cover
    from .backup import BackupResult

LOGGER = logging.getLogger(__name__)

STATUS_SUCCESS = "成功"
STATUS_FAILURE = "失败"


def build_text(
    keyword: str,
    status: str,
    result: Optional["BackupResult"] = None,
    error: Optional[str] = None,
) -> str:
    backup_name = archive = log_path = ""
    if result is not None:
        backup_name = result.backup_name
        archive = str(result.archive_path)
        log_path = str(result.log_path)

    lines = [
        keyword,
        f"状态: {status}",
        f"备份名: {backup_name}",
        f"文件: {archive}",
        f"日志: {log_path}",
    ]
    if error:
        lines.append(f"错误: {error}")
    return "\n".join(lines)


def build_payload(text: str) -> Dict[str, object]:
    return {"msg_type": "text", "content": {"text": text}}


@dataclass
class FeishuNotifier:
    """Post run status to a Feishu bot webhook.

    Delivery problems are logged and never raised: the outcome of the
    backup itself is already decided when a notification is sent.
    """

    config: FeishuConfig
    timeout: float = 10.0

    def notify(
        self,
        status: str,
        result: Optional["BackupResult"] = None,
        error: Optional[str] = None,
    ) -> bool:
        if not self.config.enabled:
            return False
        payload = build_payload(build_text(self.config.keyword or "", status, result, error))
        try:
            response = requests.post(
                self.config.webhook,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            LOGGER.error("send feishu failed: %s", exc)
            return False
        LOGGER.debug("Feishu notification sent: %s", status)
        return True


__all__ = [
    "FeishuNotifier",
    "STATUS_FAILURE",
    "STATUS_SUCCESS",
    "build_payload",
    "build_text",
]
