"""Change data capture client for SingleStore OBSERVE streams."""

from .cdc import OffsetContext, StreamingChangeEventSource, build_observe_query


def main() -> int:
    """Entrypoint proxy that defers importing the service until needed."""

    from .service import main as _service_main

    return _service_main()


__all__ = ["main", "OffsetContext", "StreamingChangeEventSource", "build_observe_query"]
