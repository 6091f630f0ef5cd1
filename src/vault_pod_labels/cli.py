"""Command-line interface for vault-pod-labels.

This module serves as the entrypoint when the registration runs as its own
process, e.g. as a sidecar next to the process whose state it publishes.
"""

import argparse
import logging
import signal
import sys
import threading

from vault_pod_labels import __description__, __version__
from vault_pod_labels.config import CONFIG_KEY_NAMESPACE, CONFIG_KEY_POD_NAME
from vault_pod_labels.kubernetes.errors import KubernetesClientError
from vault_pod_labels.registration import HAState, ServiceRegistration

# Seconds to wait for the final labels to be written on shutdown
SHUTDOWN_TIMEOUT = 30.0


def setup_logging(verbose: bool = False) -> None:
    """Set up logging configuration.

    Args:
        verbose: Whether to enable verbose logging.
    """
    log_level = logging.DEBUG if verbose else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(level=log_level, format=log_format, stream=sys.stdout)


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        args: Command-line arguments to parse. If None, sys.argv will be used.

    Returns:
        Parsed arguments.
    """
    parser = argparse.ArgumentParser(prog="vault-pod-labels", description=__description__)

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    parser.add_argument(
        "--namespace", help="Namespace of the pod to label (VAULT_K8S_NAMESPACE takes precedence)"
    )

    parser.add_argument("--pod-name", help="Name of the pod to label (VAULT_K8S_POD_NAME takes precedence)")

    parser.add_argument("--vault-version", required=True, help="Version to publish in the vault-version label")

    parser.add_argument("--active", action="store_true", help="Start as the active node")

    parser.add_argument("--sealed", action="store_true", help="Start sealed")

    parser.add_argument("--perf-standby", action="store_true", help="Start as a performance standby")

    parser.add_argument("--initialized", action="store_true", help="Start initialized")

    return parser.parse_args(args)


def main(args: list[str] | None = None) -> int:
    """Main entry point.

    Labels the pod, then waits for SIGTERM or SIGINT and leaves the final
    labels behind before exiting.

    Args:
        args: Command-line arguments. If None, sys.argv will be used.

    Returns:
        Exit code.
    """
    parsed_args = parse_args(args)
    setup_logging(parsed_args.verbose)
    logger = logging.getLogger(__name__)
    logger.info(f"Starting vault-pod-labels {__version__}")

    config = {}
    if parsed_args.namespace:
        config[CONFIG_KEY_NAMESPACE] = parsed_args.namespace
    if parsed_args.pod_name:
        config[CONFIG_KEY_POD_NAME] = parsed_args.pod_name

    state = HAState(
        version=parsed_args.vault_version,
        is_active=parsed_args.active,
        is_sealed=parsed_args.sealed,
        is_performance_standby=parsed_args.perf_standby,
        is_initialized=parsed_args.initialized,
    )
    logger.info(
        f"Initial state: version={state.version}, active={state.is_active}, sealed={state.is_sealed}, "
        f"perf_standby={state.is_performance_standby}, initialized={state.is_initialized}"
    )

    shutdown_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signal.Signals(signum).name}, shutting down")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    try:
        registration = ServiceRegistration(shutdown_event, config, state, logger=logging.getLogger("vault_pod_labels"))
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except KubernetesClientError as e:
        logger.error(f"Unable to register pod: {e}")
        return 1

    while not shutdown_event.wait(timeout=1.0):
        continue

    if not registration.join(timeout=SHUTDOWN_TIMEOUT):
        logger.warning("Timed out waiting for the final labels to be written")

    logger.info("vault-pod-labels exiting")
    return 0


if __name__ == "__main__":
    sys.exit(main())
