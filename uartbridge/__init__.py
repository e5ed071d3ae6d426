"""UART Bridge package initialisation."""

__version__ = "1.0.0"

import logging
import sys

logger = logging.getLogger(__name__)


def _check_dependencies():
    """Verify the installed MQTT stack before any transport is built."""
    try:
        import paho.mqtt.client as mqtt

        # aiomqtt 2.x drives paho with CallbackAPIVersion.VERSION2; paho 1.6
        # imports fine but fails at connect time.
        if not hasattr(mqtt, "CallbackAPIVersion"):
            logger.critical(
                "FATAL: Incompatible paho-mqtt version detected. "
                "This bridge requires paho-mqtt 2.x with CallbackAPIVersion support."
            )
            sys.exit(1)

    except ImportError:
        # If imports are missing entirely, Python will raise ImportError naturally later.
        pass


_check_dependencies()
