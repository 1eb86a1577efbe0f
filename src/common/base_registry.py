"""
共通レジストリ基底クラス
イージング関数やエフェクト種別など「名前 → 実体」の閉じた対応表に使用する。
"""

import re
from abc import ABC
from typing import Any, Callable


class BaseRegistry(ABC):
    """レジストリの基底クラス。

    - 文字列キーは正規化されます（大文字小文字・キャメル→スネーク・ハイフンを吸収）。
    - デコレータは名前省略可。省略時はクラス/関数名から自動推論します。
    """

    def __init__(self):
        self._registry: dict[str, Any] = {}

    # === 内部ユーティリティ ===
    @staticmethod
    def _camel_to_snake(name: str) -> str:
        s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", name)
        s2 = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1)
        return s2.lower()

    @classmethod
    def _normalize_key(cls, name: str) -> str:
        """レジストリキーの正規化（例: "EaseInOut" / "ease-in-out" -> "ease_in_out"）。"""
        if not isinstance(name, str):
            raise TypeError("レジストリキーは str である必要があります")
        if not name:
            raise ValueError("レジストリキーは空であってはなりません")
        name = name.strip().replace("-", "_")
        # 大文字を含む場合のみキャメル→スネーク変換
        return cls._camel_to_snake(name) if any(c.isupper() for c in name) else name.lower()

    def register(self, name: str | None = None) -> Callable:
        """クラス/関数をレジストリに登録するデコレータ。"""

        def decorator(obj: Any) -> Any:
            key = self._normalize_key(name) if name else self._normalize_key(obj.__name__)
            if key in self._registry and self._registry[key] is not obj:
                raise ValueError(f"'{key}' は既に登録されています")
            self._registry[key] = obj
            return obj

        return decorator

    def alias(self, alias: str, target: str) -> None:
        """登録済み `target` を別名 `alias` でも引けるようにする。"""
        self._registry[self._normalize_key(alias)] = self.get(target)

    def get(self, name: str) -> Any:
        """登録されたクラス/関数を取得。"""
        key = self._normalize_key(name)
        if key not in self._registry:
            raise KeyError(f"'{name}' は登録されていません")
        return self._registry[key]

    def list_all(self) -> list[str]:
        """登録されているすべての名前を取得（未ソート）。"""
        return list(self._registry.keys())

    def is_registered(self, name: str) -> bool:
        """指定された名前が登録されているかチェック"""
        try:
            return self._normalize_key(name) in self._registry
        except (TypeError, ValueError):
            return False
