"""
どこで: `engine.core.clock`
何を: 壁時計の経過時間を拍（beats）とフレーム番号へ変換する MusicalClock と、タップテンポ。
なぜ: カーブ/補間を拍で表すことで、テンポ変更が形を変えず進行速度だけを変えるようにするため。

補足:
- 一時停止中は位置が止まる。`advance_one_frame()` だけは一時停止中でも 1 フレーム分進める。
- `tick(dt=None)` は `dt` 未指定なら 1 フレーム（1/fps 秒）進める（決定的なフレーム駆動）。
"""

from __future__ import annotations

import time

from .tickable import Tickable


class MusicalClock(Tickable):
    """テンポと fps から拍位置を進める時計。"""

    def __init__(self, bpm: float = 134.0, fps: float = 60.0, *, paused: bool = False) -> None:
        if fps <= 0.0:
            raise ValueError("fps は正の値が必要")
        self._bpm = 0.0
        self.tempo(bpm)
        self._fps = float(fps)
        self._paused = bool(paused)
        self._beats = 0.0
        self._frame = 0

    def __repr__(self) -> str:
        return (
            f"MusicalClock(bpm={self._bpm}, fps={self._fps}, "
            f"beats={self._beats:.4f}, paused={self._paused})"
        )

    # --- テンポ ---
    def tempo(self, bpm: float) -> None:
        """BPM を設定する。既に進んだ拍位置は変えない。"""
        bpm = float(bpm)
        if not bpm > 0.0:
            raise ValueError("bpm は正の値が必要")
        self._bpm = bpm

    @property
    def bpm(self) -> float:
        return self._bpm

    @property
    def fps(self) -> float:
        return self._fps

    # --- 位置 ---
    def position_in_beats(self) -> float:
        return self._beats

    @property
    def frame_index(self) -> int:
        return self._frame

    def frame_beats(self) -> float:
        """1 フレームに相当する拍数（現在のテンポ/fps）。"""
        return self._bpm / 60.0 / self._fps

    def beats_to_frames(self, beats: float) -> float:
        return float(beats) * 60.0 / self._bpm * self._fps

    def seek(self, beats: float) -> None:
        self._beats = float(beats)

    # --- 進行制御 ---
    @property
    def is_paused(self) -> bool:
        return self._paused

    def play(self) -> None:
        self._paused = False

    def pause(self) -> None:
        self._paused = True

    def advance_one_frame(self) -> None:
        """一時停止中でも 1 フレーム分だけ進める。"""
        self._beats += self.frame_beats()
        self._frame += 1

    def reset(self) -> None:
        """位置とフレーム番号を 0 に戻す（テンポと一時停止状態は維持）。"""
        self._beats = 0.0
        self._frame = 0

    # -------- Tickable interface --------
    def tick(self, dt: float | None = None) -> None:
        if self._paused:
            return
        if dt is None:
            self._beats += self.frame_beats()
        else:
            self._beats += max(0.0, float(dt)) * self._bpm / 60.0
        self._frame += 1


class TapTempo:
    """タップ間隔の平均から BPM を推定する。"""

    def __init__(self, *, timeout: float = 2.0, max_taps: int = 8) -> None:
        self._timeout = float(timeout)
        self._max = max(2, int(max_taps))
        self._taps: list[float] = []

    def tap(self, now: float | None = None) -> float | None:
        """タップを記録し、推定 BPM を返す（2 回目以降）。間が空いたら数え直す。"""
        t = time.perf_counter() if now is None else float(now)
        if self._taps and t - self._taps[-1] > self._timeout:
            self._taps.clear()
        self._taps.append(t)
        del self._taps[: -self._max]
        if len(self._taps) < 2:
            return None
        intervals = [b - a for a, b in zip(self._taps, self._taps[1:])]
        mean = sum(intervals) / len(intervals)
        if mean <= 0.0:
            return None
        return 60.0 / mean


__all__ = ["MusicalClock", "TapTempo"]
