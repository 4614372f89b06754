from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from hotkey import TapHotkey


@patch("hotkey.keyboard")
def test_one_tap_per_press(mock_keyboard: MagicMock) -> None:
    taps: list[int] = []
    hotkey = TapHotkey("Key.f8")
    hotkey.start(on_tap=lambda: taps.append(1))
    _, kwargs = mock_keyboard.Listener.call_args
    press, release = kwargs["on_press"], kwargs["on_release"]

    press("Key.f8")
    press("Key.f8")  # auto-repeat
    release("Key.f8")
    press("Key.f8")
    press("Key.f9")

    assert len(taps) == 2
    hotkey.stop()
    mock_keyboard.Listener.return_value.stop.assert_called_once()


@patch("hotkey.keyboard")
def test_character_keys_match_without_quotes(mock_keyboard: MagicMock) -> None:
    taps: list[int] = []
    TapHotkey("j").start(on_tap=lambda: taps.append(1))
    _, kwargs = mock_keyboard.Listener.call_args

    kwargs["on_press"]("'j'")
    assert taps == [1]


@patch("hotkey.keyboard", None)
def test_start_without_pynput() -> None:
    with pytest.raises(RuntimeError, match="pynput is not installed"):
        TapHotkey().start(on_tap=lambda: None)
