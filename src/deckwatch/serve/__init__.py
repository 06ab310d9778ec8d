"""Control server package exposing the orchestrator over HTTP and WebSocket."""

__all__: list[str] = []
