# client/sse.py
"""
Incremental Server-Sent Events decoder.

Feed it lines as they come off the wire; it returns a `ServerSentEvent`
each time a blank line closes an event that carried data.
"""
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class ServerSentEvent:
    data: str
    event: str = "message"
    id: Optional[str] = None


class SSEDecoder:
    def __init__(self) -> None:
        self._data: List[str] = []
        self._event: Optional[str] = None
        self.last_event_id: Optional[str] = None
        # reconnection time in ms, applies as soon as the field is read
        self.retry: Optional[int] = None

    def decode(self, line: str) -> Optional[ServerSentEvent]:
        line = line.rstrip("\r\n")

        if not line:
            return self._dispatch()

        if line.startswith(":"):
            # comment / keepalive
            return None

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "data":
            self._data.append(value)
        elif field == "event":
            self._event = value
        elif field == "id":
            if "\0" not in value:
                self.last_event_id = value
        elif field == "retry":
            if value.isdigit():
                self.retry = int(value)
        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data:
            self._event = None
            return None

        sse = ServerSentEvent(
            data="\n".join(self._data),
            event=self._event or "message",
            id=self.last_event_id,
        )
        self._data = []
        self._event = None
        return sse
