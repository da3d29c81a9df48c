#!/usr/bin/env python3
"""
Cleanup script for stale station queue snapshots.

Every queue change publishes a retained snapshot per station under
``fuel_queue/stations/<station>/queue`` so that a freshly opened station map
sees the last known queue sizes. Stations that were removed, or test runs
against a shared broker, leave those snapshots behind; this script clears
every retained message matching a topic pattern.

Usage:
    python cleanup_mqtt.py                              # fuel_queue/stations/#
    python cleanup_mqtt.py "fuel_queue/stations/st-9/#" # one station
    python cleanup_mqtt.py "test/#" broker.local 1884   # other broker
"""

import sys
import time

import paho.mqtt.client as mqtt

DEFAULT_PATTERN = "fuel_queue/stations/#"


def clear_retained_messages(broker="localhost", port=1883, topic_pattern=DEFAULT_PATTERN):
    """
    Clear all retained messages matching the topic pattern.

    Args:
        broker: MQTT broker hostname
        port: MQTT broker port
        topic_pattern: Topic pattern to match (use # for wildcard)

    Returns:
        List of topics whose retained message was cleared
    """
    cleared = []

    def on_connect(client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            print(f"Connection failed: {reason_code}")
            return
        print(f"Connected to {broker}:{port}, subscribing to {topic_pattern}")
        client.subscribe(topic_pattern)

    def on_message(client, userdata, msg):
        # An empty payload is the broker echoing our own clear
        if msg.retain and msg.payload:
            cleared.append(msg.topic)
            client.publish(msg.topic, payload=None, qos=1, retain=True)
            print(f"  cleared {msg.topic}")

    client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
    client.on_connect = on_connect
    client.on_message = on_message

    client.connect(broker, port, 60)
    client.loop_start()
    try:
        # Retained messages arrive right after subscribing
        time.sleep(2)
    finally:
        client.loop_stop()
        client.disconnect()

    return cleared


def main():
    """Main entry point."""
    topic_pattern = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_PATTERN
    broker = sys.argv[2] if len(sys.argv) > 2 else "localhost"
    port = int(sys.argv[3]) if len(sys.argv) > 3 else 1883

    if topic_pattern in ("#", "+/#", "#/+"):
        response = input("This clears ALL retained messages on the broker. Continue? (yes/no): ")
        if response.lower() != "yes":
            print("Cancelled.")
            sys.exit(0)

    try:
        cleared = clear_retained_messages(broker, port, topic_pattern)
    except OSError as e:
        print(f"Error: cannot reach {broker}:{port}: {e}")
        sys.exit(1)

    print(f"Cleared {len(cleared)} retained message(s) matching '{topic_pattern}'")


if __name__ == "__main__":
    main()
