"""vault-controller: operate a Vault server.

Performs the following in a loop, every ``loop.interval`` seconds:

    1. Initialize Vault.  Key shares and the root token are saved once in a
       Kubernetes Secret (keys ``Keys`` and ``RootToken``).
    2. Unseal Vault.
    3. Configure Vault through its API: GitHub auth and any declared states.

Any failure is logged with the step that failed and exits with status 1.
The controller relies on being restarted; every step is safe to repeat.
Exactly one controller may run against a given Vault and Secret.
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from kubernetes import client, config as k8s_config

from .api import VaultAPI
from .config import CONFIG_FILE, load_config
from .errors import ConfigError, ControllerError, fatal
from .loop import ControlLoop, Controller
from .store import KubeSecretStore

logger = logging.getLogger("vault_controller")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def kube_core_api() -> client.CoreV1Api:
    try:
        k8s_config.load_incluster_config()
    except k8s_config.ConfigException:
        try:
            k8s_config.load_kube_config()
        except k8s_config.ConfigException as e:
            raise ConfigError(f"no Kubernetes configuration: {e}", step="load Kubernetes configuration")
    return client.CoreV1Api()


def install_signal_handlers(cancel: threading.Event) -> None:
    """Turn SIGINT/SIGTERM into cancellation of the control loop."""
    def _handler(signum, frame):
        logger.info("received %s, stopping after the current tick", signal.Signals(signum).name)
        cancel.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vault-controller",
        description="Initialize, unseal and configure a Vault server.",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help=f"Path to config file (default: ./{CONFIG_FILE} or /etc/vault-controller/{CONFIG_FILE})",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log verbosity (default: INFO)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    cancel = threading.Event()
    install_signal_handlers(cancel)

    try:
        cfg = load_config(args.config)
        logger.info("controlling Vault at %s", cfg.vault_addr)

        api = VaultAPI(cfg.vault_addr)
        store = KubeSecretStore(
            kube_core_api(), cfg.creds_secret.namespace, cfg.creds_secret.labels,
        )
        controller = Controller(api, store, cfg)
        ControlLoop(controller.tick, cfg.interval, cancel).run()
    except ControllerError as e:
        return fatal(logger, e)
    return 0


if __name__ == "__main__":
    sys.exit(main())
