from typing import Protocol, runtime_checkable

class ChangeListener(Protocol):
    async def start(self) -> None:
        """Attach to the topic. Values published after this returns are delivered."""
        ...

    def __aiter__(self) -> "ChangeListener": ...

    async def __anext__(self) -> dict: ...

    async def aclose(self) -> None: ...

@runtime_checkable
class EventBusPort(Protocol):
    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None: ...

    def listen(self, topic: str) -> ChangeListener:
        """Listener for ``topic``; iterate it until closed."""
        ...
