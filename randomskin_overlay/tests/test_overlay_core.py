from randomskin_overlay.bridge_channel import ChannelState
from randomskin_overlay.client_config import OverlaySettings
from randomskin_overlay.control_affordance import CONTROL_CLASS
from randomskin_overlay.messages import ResourceKey
from randomskin_overlay.overlay_core import OverlayCore
from randomskin_overlay.render_reconciler import FLAG_MARKER, OWNED_PROPERTIES, image_value
from randomskin_overlay.tests.helpers import AfterHarness, FakeTransport, FakeTree, build_carousel

FLAG_URL = "http://127.0.0.1:3001/random_flag.png"


def _build(settings=None):
    harness = AfterHarness()
    tree = FakeTree()
    infos = build_carousel(tree)
    transport = FakeTransport()
    core = OverlayCore(tree, transport, after=harness.after, settings=settings)
    core.start()
    transport.connect()
    return core, tree, infos, transport, harness


def _asset_requests(transport):
    return [m["key"] for m in transport.sent_messages() if m["type"] == "asset-request"]


def test_start_preloads_every_resource_once_connected():
    core, _tree, _infos, transport, _harness = _build()
    assert core.channel.state is ChannelState.OPEN
    assert transport.opened_urls == ["ws://localhost:3000"]
    assert sorted(_asset_requests(transport)) == ["dice-disabled", "dice-enabled", "flag"]


def test_champ_select_scenario_end_to_end():
    core, tree, infos, transport, harness = _build()
    transport.receive({"type": "phase-signal", "phase": "ChampSelect"})
    harness.run_all()
    transport.receive({"type": "asset-delivered", "key": "dice-disabled", "handleRef": "dice-disabled.png"})
    transport.receive({"type": "asset-delivered", "key": "dice-enabled", "handleRef": "dice-enabled.png"})
    transport.receive({"type": "state-update", "active": True, "controlMode": "enabled"})
    transport.receive({"type": "asset-delivered", "key": "flag", "handleRef": FLAG_URL})

    anchor = infos[2]
    assert anchor.has_class(FLAG_MARKER)
    assert anchor.style_value("background-image") == image_value(FLAG_URL)
    (control,) = tree.live_controls()
    assert control.has_class(CONTROL_CLASS)
    assert control.has_class("enabled")
    assert control.image == "dice-enabled.png"

    transport.receive({"type": "state-update", "active": False, "controlMode": "disabled"})

    assert not anchor.has_class(FLAG_MARKER)
    assert not any(prop in anchor.styles for prop in OWNED_PROPERTIES)
    assert control.has_class("disabled")
    assert control.image == "dice-disabled.png"
    assert harness.pending == []


def test_phase_exit_leaves_no_trace():
    core, tree, infos, transport, harness = _build()
    transport.receive({"type": "phase-signal", "phase": "ChampSelect"})
    harness.run_all()
    transport.receive({"type": "asset-delivered", "key": "flag", "handleRef": FLAG_URL})
    transport.receive({"type": "state-update", "active": True, "controlMode": "disabled"})
    assert infos[2].has_class(FLAG_MARKER)

    transport.receive({"type": "phase-signal", "phase": "InProgress"})

    assert tree.live_controls() == []
    for info in infos:
        assert not info.has_class(FLAG_MARKER)
        assert info.styles == {}


def test_legacy_message_names_drive_the_same_flow():
    core, tree, infos, transport, harness = _build()
    transport.receive({"type": "phase-change", "phase": "ChampSelect"})
    harness.run_all()
    transport.receive({"type": "random-mode-state", "active": True, "diceState": "enabled", "randomSkinId": 5})
    transport.receive({"type": "local-asset-url", "assetPath": "random_flag.png", "url": FLAG_URL})
    assert infos[2].has_class(FLAG_MARKER)
    assert core.reconciler.activation.active


def test_control_click_reaches_the_controller():
    core, tree, _infos, transport, harness = _build()
    transport.receive({"type": "phase-signal", "phase": "ChampSelect"})
    harness.run_all()
    transport.receive({"type": "state-update", "active": False, "controlMode": "enabled"})
    tree.live_controls()[0].click()
    clicks = [m for m in transport.sent_messages() if m["type"] == "control-click"]
    assert len(clicks) == 1
    assert clicks[0]["controlMode"] == "enabled"
    assert clicks[0]["source"] == "LU-RandomSkin"


def test_garbage_and_unknown_frames_are_ignored():
    core, _tree, _infos, transport, harness = _build()
    transport.receive("{not json")
    transport.receive("[1, 2]")
    transport.receive({"type": "chroma-state", "active": True})
    transport.receive({"type": "phase-signal", "phase": "ChampSelect"})
    assert core.gate.in_interaction_phase


def test_state_before_phase_is_applied_on_entry():
    core, tree, infos, transport, harness = _build()
    transport.receive({"type": "asset-delivered", "key": "flag", "handleRef": FLAG_URL})
    transport.receive({"type": "state-update", "active": True, "controlMode": "disabled"})
    assert not infos[2].has_class(FLAG_MARKER)
    transport.receive({"type": "phase-signal", "phase": "FINALIZATION"})
    harness.run_all()
    assert infos[2].has_class(FLAG_MARKER)


def test_late_carousel_is_picked_up_by_mutation_watcher():
    harness = AfterHarness()
    tree = FakeTree()
    transport = FakeTransport()
    core = OverlayCore(tree, transport, after=harness.after)
    core.start()
    transport.connect()
    transport.receive({"type": "phase-signal", "phase": "ChampSelect"})
    harness.run_all()
    transport.receive({"type": "asset-delivered", "key": "flag", "handleRef": FLAG_URL})
    transport.receive({"type": "state-update", "active": True, "controlMode": "disabled"})
    assert tree.live_controls() == []

    infos = build_carousel(tree)
    harness.run_all()

    assert infos[2].has_class(FLAG_MARKER)
    assert len(tree.live_controls()) == 1


def test_reconnect_requests_assets_again_after_drop():
    core, _tree, _infos, transport, harness = _build()
    assert len(_asset_requests(transport)) == 3
    transport.drop("server restarted")
    assert core.channel.state is ChannelState.CLOSED
    assert not core.resolver.is_pending(ResourceKey.FLAG)
    assert harness.delays() == [3000]

    harness.run_next()
    assert transport.opened_urls == ["ws://localhost:3000"] * 2
    transport.connect()

    assert sorted(_asset_requests(transport)) == sorted(["dice-disabled", "dice-enabled", "flag"] * 2)


def test_delivered_assets_are_not_requested_after_reconnect():
    core, _tree, _infos, transport, harness = _build()
    transport.receive({"type": "asset-delivered", "key": "flag", "handleRef": FLAG_URL})
    transport.drop()
    harness.run_next()
    transport.connect()
    assert _asset_requests(transport).count("flag") == 1


def test_stop_closes_channel_and_tears_down():
    core, tree, infos, transport, harness = _build()
    transport.receive({"type": "phase-signal", "phase": "ChampSelect"})
    harness.run_all()
    transport.receive({"type": "asset-delivered", "key": "flag", "handleRef": FLAG_URL})
    transport.receive({"type": "state-update", "active": True, "controlMode": "disabled"})

    core.stop()

    assert transport.closes == 1
    assert core.channel.state is ChannelState.CLOSED
    assert not core.watcher.watching
    assert not infos[2].has_class(FLAG_MARKER)
    assert tree.live_controls() == []


def test_settings_flow_into_components():
    settings = OverlaySettings(bridge_url="ws://127.0.0.1:4000", interaction_phases=("Lobby",), phase_settle_ms=0)
    core, tree, _infos, transport, harness = _build(settings)
    assert transport.opened_urls == ["ws://127.0.0.1:4000"]
    transport.receive({"type": "phase-signal", "phase": "ChampSelect"})
    assert not core.gate.in_interaction_phase
    transport.receive({"type": "phase-signal", "phase": "Lobby"})
    assert harness.delays() == [0]


def test_request_requeued_by_failed_write_is_sent_once_on_reopen():
    core, _tree, _infos, transport, harness = _build()
    transport.drop()
    harness.run_next()
    transport.fail_sends = 1
    transport.connect()
    assert core.channel.state is ChannelState.CLOSED
    assert core.resolver.is_pending(ResourceKey.FLAG)

    harness.run_next()
    transport.connect()

    # One request per connection that actually carried it.
    assert _asset_requests(transport).count("flag") == 2
    assert sorted(_asset_requests(transport)) == sorted(["dice-disabled", "dice-enabled", "flag"] * 2)
    assert core.channel.queued == 0
