"""
どこで: `engine.io` サブパッケージ（外部コントローラ）。
何を: MIDI ワイヤコーデック/ポート（controller）と、バインディング/学習/再送のブリッジ（bridge）。
なぜ: 入力デバイス依存を隔離し、コントロールハブからは統一 API で参照できるようにするため。
"""
