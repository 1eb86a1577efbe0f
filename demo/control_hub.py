from __future__ import annotations

import logging
from pathlib import Path

from api import ControlHub, FrameClock, HubOptions, open_controller
from common.logging import setup_default_logging
from util.utils import load_control_script

FRAMES = 240

logger = logging.getLogger(__name__)


def main() -> None:
    """スクリプトを読み込み、描画の代わりに数フレーム分の値をログへ出す。"""
    setup_default_logging(logging.INFO)
    document = load_control_script(Path(__file__).with_name("controls.yaml"))
    hub = ControlHub(document, options=HubOptions.from_config(), sketch="control_hub_demo")
    port = open_controller(hub)
    frame = FrameClock([hub], fixed_dt=1.0 / hub.clock.fps)
    try:
        for i in range(FRAMES):
            frame.tick()
            if i % 30 == 0:
                logger.info("beat %.2f: %s", hub.clock.position_in_beats(), hub.values())
    finally:
        port.close()


if __name__ == "__main__":
    main()
