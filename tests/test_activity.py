from keyoverlay.activity import ComboTracker, build_combo, is_modifier_name, key_filter_allows
from keyoverlay.presets import DEFAULT_SETTINGS


def test_key_filter_allows():
    assert key_filter_allows("", "A")
    assert key_filter_allows("   ", "A")
    assert key_filter_allows("Q, W e", "w")
    assert key_filter_allows("q", "Q")
    assert not key_filter_allows("Q,W", "A")
    assert not key_filter_allows("QW", "Q")


def test_build_combo_orders_modifiers():
    assert build_combo(set(), "A") == "A"
    assert build_combo({"Shift", "Ctrl"}, "A") == "Ctrl+Shift+A"
    assert build_combo({"⌘", "Alt", "Ctrl", "Shift"}, "K") == "⌘+Ctrl+Alt+Shift+K"
    assert build_combo({"Win", "Ctrl"}, "A") == "Ctrl+A"


def test_build_combo_with_modifier_trigger():
    assert build_combo({"Shift"}, "Shift") == "Shift"
    assert build_combo({"Ctrl", "Shift"}, "Shift") == "Ctrl+Shift"
    assert build_combo({"Shift", "Ctrl"}, "Ctrl") == "Ctrl+Shift"
    assert build_combo({"Ctrl", "Caps"}, "Caps") == "Ctrl+Caps"


def test_modifier_names():
    for name in ("⌘", "Win", "Shift", "Ctrl", "Alt", "Caps", "Fn"):
        assert is_modifier_name(name)
    assert not is_modifier_name("A")


def test_tracker_with_default_settings():
    tracker = ComboTracker(DEFAULT_SETTINGS)

    assert tracker.key_down("Q") == "Q"
    assert tracker.key_down("A") is None
    assert tracker.key_down("Ctrl") is None
    assert tracker.key_down("W") == "Ctrl+W"
    assert tracker.mouse_down("left") == "Ctrl+LClick"
    assert tracker.mouse_down("middle") is None

    tracker.key_up("Ctrl")
    assert tracker.mouse_down("right") is None
    assert tracker.held == frozenset({"Q", "A", "W"})


def test_tracker_plain_clicks_when_enabled():
    tracker = ComboTracker(DEFAULT_SETTINGS.merged({"show_mouse_clicks": True}))
    assert tracker.mouse_down("left") == "LClick"
    tracker.key_down("A")
    # Holding a non-modifier key still counts as a plain click.
    assert tracker.mouse_down("right") == "RClick"


def test_tracker_hides_click_combos_when_disabled():
    tracker = ComboTracker(DEFAULT_SETTINGS.merged({"show_mouse_click_combos": False}))
    tracker.key_down("Shift")
    assert tracker.mouse_down("left") is None


def test_tracker_modifiers_alone_and_repeat_suppression():
    tracker = ComboTracker(
        DEFAULT_SETTINGS.merged({"show_modifiers_alone": True, "key_filter_enabled": False})
    )

    assert tracker.key_down("Shift") == "Shift"
    assert tracker.key_down("Shift") is None
    assert tracker.key_down("Ctrl") == "Ctrl+Shift"
    assert tracker.key_down("X") == "Ctrl+Shift+X"
    assert tracker.key_down("X") == "Ctrl+Shift+X"


def test_tracker_without_combo_mode_shows_single_keys():
    tracker = ComboTracker(DEFAULT_SETTINGS.merged({"combo_mode": False}))
    tracker.key_down("Ctrl")
    assert tracker.key_down("Q") == "Q"


def test_tracker_follows_settings_updates():
    tracker = ComboTracker(DEFAULT_SETTINGS)
    assert tracker.key_down("Z") is None
    tracker.update_settings(DEFAULT_SETTINGS.merged({"key_filter": "Z X"}))
    assert tracker.key_down("Z") == "Z"
    tracker.reset()
    assert tracker.held == frozenset()
