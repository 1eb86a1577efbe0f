"""
どこで: `common` パッケージ。
何を: エンジン非依存の軽量ユーティリティ（レジストリ基底/波形プリミティブ/環境設定/ロギング）。
なぜ: コントロール層から再利用する共通基盤を分離し、依存の向きを単純化するため。
"""

from .base_registry import BaseRegistry

__all__ = [
    "BaseRegistry",
]
