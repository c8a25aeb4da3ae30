from __future__ import annotations


class ResponseAccumulator:
    """Per-call text buffer for a response that arrives in fragments.

    One instance belongs to exactly one in-flight call and is dropped when the
    call's event sequence ends.
    """

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._length = 0
        self.done = False

    def append(self, fragment: str) -> None:
        if self.done:
            raise RuntimeError("cannot append to a finished response")
        self._parts.append(fragment)
        self._length += len(fragment)

    def snapshot(self) -> str:
        text = "".join(self._parts)
        # keep a single joined part so repeated snapshots stay linear
        self._parts = [text] if text else []
        return text

    def mark_done(self) -> None:
        self.done = True

    def __len__(self) -> int:
        return self._length

    def __bool__(self) -> bool:
        return self._length > 0
