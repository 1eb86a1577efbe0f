"""
どこで: `engine.core` サブパッケージ。
何を: 拍ベースの時計（MusicalClock/TapTempo）とフレーム駆動（Tickable/FrameClock）を提供。
なぜ: コントロール層が時間の進め方に依存しないよう、時間源を最下層に分離するため。
"""
