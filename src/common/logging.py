"""
プロジェクト向けの軽量ロギングユーティリティ。

要点:
- 既定では各モジュールが `logging.getLogger(__name__)` でロガーを取得する。
- アプリ側で設定が無い場合でも、妥当な最小構成を 1 度だけ適用するヘルパーを提供する。
- `PXC_DEBUG_CONTROLLER=1` のときはコントローラ入力ロガーだけ DEBUG に下げる。
"""

from __future__ import annotations

import logging

CONTROLLER_LOGGER = "engine.io.bridge"


def setup_default_logging(level: int | str = "INFO") -> None:
    """最小限のロギング設定を 1 度だけ適用する。

    - ルートロガーにハンドラが既にあれば何もしない（no-op）
    - スケッチのホスト（描画ループ側）から呼び出す想定
    """
    if isinstance(level, str):
        lvl = getattr(logging, level.upper(), logging.INFO)
    else:
        lvl = int(level)

    root = logging.getLogger()
    if root.handlers:
        # Assume the app has configured logging
        return
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    from .settings import get as _get_settings

    if _get_settings().DEBUG_CONTROLLER:
        logging.getLogger(CONTROLLER_LOGGER).setLevel(logging.DEBUG)


__all__ = ["setup_default_logging", "CONTROLLER_LOGGER"]
