from __future__ import annotations

import signal
import threading
from contextlib import contextmanager


@contextmanager
def catch_signal(signalnum: signal._SIGNUM, handler: signal._HANDLER):
    original_handler = signal.getsignal(signalnum)
    signal.signal(signalnum, handler)
    try:
        yield
    finally:
        signal.signal(signalnum, original_handler)


def on_main_thread() -> bool:
    # signal handlers can only be installed from the main thread
    return threading.current_thread() is threading.main_thread()


def format_error(exc: BaseException) -> str:
    import traceback

    return "".join(traceback.format_exception(None, value=exc, tb=exc.__traceback__))
