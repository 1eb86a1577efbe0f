"""
どこで: `common.settings`
何を: プロジェクトの環境変数（`PXC_*`）を型付きで一元管理し、起動時に読み込む。
なぜ: `os.getenv` の散在を解消し、既定値/型の一貫性とテスト容易性を高めるため。

補足:
- スケッチ単位の設定（テンポ/ポート/保存先）は YAML（`util.utils.load_config`）が担う。
  ここはデバッグ/実行環境寄りのトグルのみを扱う。
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .env import env_bool, env_float, env_int


@dataclass
class _Settings:
    # コントローラ
    DEBUG_CONTROLLER: bool = False
    # None なら YAML の `midi.hrcc` を使う
    HRCC: bool | None = None

    # ランダマイズ（None で非決定）
    RANDOM_SEED: int | None = None

    # 永続化の量子化
    PERSIST_QUANT_STEP: float = 1e-6


_settings = _Settings()


def reload_from_env() -> None:
    """環境変数から設定を再読込。

    - bool は `env_bool`、int は `env_int`、float は `env_float` を使用。
    - 量子化ステップは 0 以下を既定値へ戻す。
    """
    _settings.DEBUG_CONTROLLER = env_bool("PXC_DEBUG_CONTROLLER", False)
    _settings.HRCC = env_bool("PXC_HRCC", False) if os.getenv("PXC_HRCC") is not None else None

    _settings.RANDOM_SEED = env_int("PXC_RANDOM_SEED", None, min_value=0)

    step = env_float("PXC_PERSIST_QUANT_STEP", 1e-6)
    _settings.PERSIST_QUANT_STEP = step if step is not None and step > 0.0 else 1e-6


def get() -> _Settings:
    """現在の設定スナップショットを返す。"""
    return _settings


# 初期ロード
reload_from_env()


__all__ = ["get", "reload_from_env", "_Settings"]
