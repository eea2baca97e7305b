import signal
import sys
import threading
from typing import List, Optional

from dotenv import load_dotenv

from runtime.version import as_string
from scoring.access import IdentityDirectory
from scoring.observers import StateFileObserver, WebhookObserver
from scoring.publisher import Observer, SubscriptionHandle
from scoring.service import ScoringService
from services.results_api import ResultsApiServer
from shared.config.scoring import load_scoring_config
from shared.logging.logger import get_logger
from shared.storage.ranking_state import RankingStateStore

log = get_logger("scoring.app")


def build_observers(service: ScoringService) -> List[Observer]:
    publisher_cfg = service.config.publisher
    digits = service.digits

    observers: List[Observer] = []
    if publisher_cfg.state_dir:
        store = RankingStateStore(base_dir=publisher_cfg.state_dir)
        observers.append(StateFileObserver(store, digits=digits))
    for url in publisher_cfg.webhooks:
        observers.append(WebhookObserver(url, digits=digits))
    return observers


def attach_observers(
    service: ScoringService,
    observers: Optional[List[Observer]] = None,
) -> List[SubscriptionHandle]:
    """Subscribe the configured state-file and webhook observers to every poll."""
    if observers is None:
        observers = build_observers(service)

    handles: List[SubscriptionHandle] = []
    if not observers:
        return handles

    for poll_id in service.store.list_poll_ids():
        for observer in observers:
            handles.append(service.subscribe(poll_id, observer))
    log.info(f"Attached {len(observers)} observer(s) to {len(handles) // len(observers)} poll(s)")
    return handles


def close_observers(observers: List[Observer]) -> None:
    for observer in observers:
        close = getattr(observer, "close", None)
        if callable(close):
            close()


def main(stop_event: threading.Event) -> None:
    # --------------------------------------------------
    # ENV + CONFIG
    # --------------------------------------------------
    load_dotenv()
    log.info("Environment variables loaded")
    log.info(f"{as_string()} booting")

    config = load_scoring_config()

    # --------------------------------------------------
    # CORE SYSTEMS
    # --------------------------------------------------
    identities = IdentityDirectory()
    service = ScoringService.from_config(config, identities)
    log.info(f"Contribution store: {service.store.db_path}")

    observers = build_observers(service)
    attach_observers(service, observers)

    api = ResultsApiServer(service, identities, config.api)
    api.start()

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    stop_event.wait()

    log.info("Shutdown initiated")

    api.stop()
    service.flush(timeout=5.0)
    service.close()
    close_observers(observers)

    log.info("Scoring engine stopped")


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handler(signum, frame):
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def run() -> None:
    stop_event = threading.Event()
    _install_signal_handlers(stop_event)

    try:
        main(stop_event)
    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received; shutdown initiated")
        stop_event.set()


if __name__ == "__main__":
    run()
    sys.exit(0)
