from unittest.mock import patch
from mbc.domain.events import RequestStop
from mbc.infrastructure.event_bus import EventBus
from mbc.ui.keyboard import KeyboardListener

def _listener():
    bus = EventBus()
    stops = []
    bus.subscribe(RequestStop, stops.append)
    return KeyboardListener(bus), stops

def test_keyboard_listener_initialization():
    """Test that KeyboardListener can be initialized with EventBus."""
    bus = EventBus()
    listener = KeyboardListener(bus)
    assert listener.event_bus is bus
    assert not listener._stop_event.is_set()

def test_keyboard_listener_stop_event():
    listener, _ = _listener()
    listener.stop()
    assert listener._stop_event.is_set()

def test_s_requests_graceful_stop():
    listener, stops = _listener()
    assert listener._handle_key("s") is True
    assert listener._handle_key("S") is True
    assert [e.force for e in stops] == [False, False]

def test_ctrl_c_requests_forced_stop():
    listener, stops = _listener()
    assert listener._handle_key("\x03") is False
    assert stops[0].force

def test_other_keys_ignored():
    listener, stops = _listener()
    assert listener._handle_key("x") is True
    assert stops == []

def test_start_without_terminal_does_nothing():
    listener, _ = _listener()
    with patch("sys.stdin") as mock_stdin:
        mock_stdin.isatty.return_value = False
        listener.start()
    assert listener._thread is None
