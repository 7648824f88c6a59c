import json

from common.config import COUNTER_MODULO
from common.log import log

COMMANDS = ("next", "prev", "reset", "goto", "repeat")


def parse_command(raw):
    """
    Turn one admin frame into (name, value).

    Accepted: JSON string ("next"), JSON object ({"action": "goto", "value": 4})
    or bare text (next). Returns (None, None) when nothing usable is found.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    try:
        cmd = json.loads(raw)
    except (TypeError, ValueError):
        cmd = raw.strip() if isinstance(raw, str) else None

    if isinstance(cmd, str):
        return cmd.strip().lower(), None
    if isinstance(cmd, dict) and isinstance(cmd.get("action"), str):
        return cmd["action"].strip().lower(), cmd.get("value")
    return None, None


def _as_int(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


class CounterService:
    """Owns the queue number. Mutated only through apply()."""

    def __init__(self, modulo=COUNTER_MODULO, value=0):
        self.modulo = modulo
        self._value = value % modulo
        self._listeners = []

    def current_value(self):
        return self._value

    def subscribe(self, listener):
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def apply(self, command, value=None):
        if command == "next":
            self._value = (self._value + 1) % self.modulo
        elif command == "prev":
            self._value = (self._value - 1) % self.modulo
        elif command == "reset":
            self._value = 0
        elif command == "goto":
            target = _as_int(value)
            if target is None or not 0 <= target < self.modulo:
                log("counter", "-", "GOTO_IGNORED", "WARN", value=value)
            else:
                self._value = target
        elif command == "repeat":
            pass
        else:
            log("counter", "-", "UNKNOWN_COMMAND", "WARN", command=command)
            return self._value

        log("counter", "-", "COUNTER_APPLY", command=command, value=self._value)
        self.publish()
        return self._value

    def publish(self):
        for listener in list(self._listeners):
            listener(self._value)
