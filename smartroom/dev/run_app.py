from __future__ import annotations

import logging
import sys
import threading

from smartroom.bootstrap import build_app_system
from smartroom.core.config.yaml_config import load_app_config
from smartroom.core.state_store import StateChange
from smartroom.domain.models import SessionStatus

logger = logging.getLogger("smartroom")


def main() -> None:
    """
    Start the headless session runtime and log until interrupted.

    Notes
    -----
    - Loads configuration from `config.yaml` by default.
    - Optional CLI usage:
        python -m smartroom.dev.run_app --config path/to/config.yaml
    """
    config_path = None
    if "--config" in sys.argv:
        i = sys.argv.index("--config")
        if i + 1 < len(sys.argv):
            config_path = sys.argv[i + 1]

    cfg = load_app_config(config_path)
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    wiring = build_app_system(cfg=cfg)

    def _on_status(status: SessionStatus) -> None:
        logger.info("status: %s", status.text)

    def _on_change(change: StateChange) -> None:
        if change.changed:
            s = change.after
            logger.debug(
                "%s: T=%.2f gas=%.1f door=%s fans=%s/%s buzzer=%s alarm=%s",
                change.reason,
                s.temperature,
                s.gas_level,
                "open" if s.door_open else "closed",
                int(s.fan1_on),
                int(s.fan2_on),
                int(s.buzzer_on),
                s.alarm_active,
            )

    wiring.manager.add_status_listener(_on_status)
    wiring.controller.add_state_listener(_on_change)
    wiring.runtime.start()

    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("stopping")
    finally:
        wiring.runtime.stop()
        if wiring.notifier is not None:
            wiring.notifier.stop()


if __name__ == "__main__":
    main()
