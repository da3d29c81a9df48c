from .mqtt import MQTTBroadcaster, NoOpBroadcaster
from typing import Optional, Union, Dict, Any
import logging

logger = logging.getLogger(__name__)

_broadcaster: Optional[Union[MQTTBroadcaster, NoOpBroadcaster]] = None
_broadcaster_config: Optional[Dict[str, Any]] = None


def get_broadcaster(
    broadcast_type: str, broker: str, port: int
) -> Union[MQTTBroadcaster, NoOpBroadcaster]:
    """Get or create the process broadcaster for the given config."""
    global _broadcaster, _broadcaster_config

    desired_config = {
        "broadcast_type": broadcast_type,
        "broker": broker,
        "port": port,
    }

    # Reuse the existing instance when the config matches
    if _broadcaster is not None and _broadcaster_config == desired_config:
        return _broadcaster

    if _broadcaster is not None:
        shutdown_broadcaster()

    if broadcast_type == "mqtt":
        broadcaster: Union[MQTTBroadcaster, NoOpBroadcaster] = MQTTBroadcaster(broker, port)
    else:
        broadcaster = NoOpBroadcaster()

    if not broadcaster.connect():
        logger.warning(f"Broadcaster {broadcast_type} not connected; events will be dropped")

    _broadcaster = broadcaster
    _broadcaster_config = desired_config
    return broadcaster


def shutdown_broadcaster():
    """Shutdown global broadcaster."""
    global _broadcaster, _broadcaster_config
    if _broadcaster:
        _broadcaster.disconnect()
        _broadcaster = None
        _broadcaster_config = None
