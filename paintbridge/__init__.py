"""Paint Bridge Package Initialisation."""

__version__ = "1.0.0"

import logging
import sys

logger = logging.getLogger(__name__)


def _check_dependencies():
    """Verify the installed MQTT client stack is usable."""
    try:
        import paho.mqtt.client as mqtt

        # aiomqtt relies on the paho-mqtt 2.x callback API.
        if not hasattr(mqtt, "CallbackAPIVersion"):
            logger.critical(
                "FATAL: Incompatible paho-mqtt version detected. "
                "This gateway requires paho-mqtt 2.x with CallbackAPIVersion support."
            )
            sys.exit(1)

    except ImportError:
        # If imports are missing entirely, Python will raise ImportError naturally later.
        pass


_check_dependencies()
