"""
Tests for neptune-core argument compilation.
"""

import logging

import pytest

from nsup.args_builder import compile_args, preview_args, values_equal
from nsup.flags import CONSUMED_FIELDS, FLAG_MAP, category_descriptors, descriptor_for
from nsup.peers import PeerRecord
from nsup.settings import NodeSettings


def peers_for(*records):
    """enabled_peers stand-in that returns everything, unfiltered."""
    return lambda network: list(records)


class TestCompileArgs:
    """Default suppression, flag kinds and ordering."""

    def test_defaults_produce_no_args(self):
        assert compile_args(NodeSettings(), NodeSettings.defaults()) == []

    def test_testnet_with_composing(self):
        settings = NodeSettings()
        settings.network.network = "testnet"
        settings.mining.compose = True

        args = compile_args(settings, NodeSettings.defaults(), lambda network: [])

        assert args == ["--network", "testnet", "--mine"]

    def test_guess_alone_turns_on_mine(self):
        settings = NodeSettings()
        settings.mining.guess = True
        assert compile_args(settings, NodeSettings.defaults()) == ["--mine"]

    def test_boolean_flag_emitted_alone(self):
        settings = NodeSettings()
        settings.network.restrict_peers_to_list = True
        assert compile_args(settings, NodeSettings.defaults()) == ["--restrict-peers-to-list"]

    def test_boolean_false_against_true_default_emits_nothing(self):
        defaults = NodeSettings()
        defaults.security.disable_cookie_hint = True
        settings = NodeSettings()
        assert compile_args(settings, defaults) == []

    def test_valued_flags_stringified(self):
        settings = NodeSettings()
        settings.network.max_num_peers = 20
        settings.mining.gobbling_fraction = 0.75
        args = compile_args(settings, NodeSettings.defaults())
        assert args == ["--max-num-peers", "20", "--gobbling-fraction", "0.75"]

    def test_value_map_applied(self):
        settings = NodeSettings()
        settings.performance.tx_proving_capability = "singleproof"
        args = compile_args(settings, NodeSettings.defaults())
        assert args == ["--tx-proving-capability", "singleproof"]

    def test_repeated_flag_fans_out_in_order(self):
        settings = NodeSettings()
        settings.security.banned_ips = ["10.0.0.2", "10.0.0.1"]
        args = compile_args(settings, NodeSettings.defaults())
        assert args == ["--ban", "10.0.0.2", "--ban", "10.0.0.1"]

    def test_unset_optional_fields_are_skipped(self):
        settings = NodeSettings()
        settings.mining.guesser_threads = None
        settings.data.data_dir = None
        assert compile_args(settings, NodeSettings.defaults()) == []

    def test_categories_in_fixed_order(self):
        settings = NodeSettings()
        settings.advanced.tokio_console = True
        settings.data.import_block_flush_period = 100
        settings.network.peer_port = 9900
        args = compile_args(settings, NodeSettings.defaults())
        assert args == [
            "--peer-port", "9900",
            "--import-block-flush-period", "100",
            "--tokio-console",
        ]

    def test_block_notify_command_is_last(self):
        settings = NodeSettings()
        settings.advanced.block_notify_command = "notify.sh %s"
        settings.mining.compose = True
        settings.network.network = "regtest"
        args = compile_args(settings, NodeSettings.defaults())
        assert args[-1] == "notify.sh %s"
        assert args == ["--network", "regtest", "--mine", "notify.sh %s"]

    def test_unknown_field_is_skipped_with_warning(self, caplog):
        settings = NodeSettings.from_dict({"network": {"warpDrive": True}})
        with caplog.at_level(logging.WARNING, logger="nsup.args"):
            args = compile_args(settings, NodeSettings.defaults())
        assert args == []
        assert "network.warp_drive" in caplog.text

    def test_deterministic(self):
        settings = NodeSettings()
        settings.network.network = "testnet"
        settings.network.peers = ["203.0.113.9:9798"]
        settings.security.banned_ips = ["10.0.0.1"]
        peers = peers_for(PeerRecord(address="198.51.100.1:9798", network="testnet", id="p-1"))

        first = compile_args(settings, NodeSettings.defaults(), peers)
        second = compile_args(settings, NodeSettings.defaults(), peers)

        assert first == second


class TestPeerFlags:
    """Registry peers become --peer flags after the per-field flags."""

    def test_only_enabled_unbanned_peers_on_network(self):
        settings = NodeSettings()
        settings.network.network = "testnet"
        peers = peers_for(
            PeerRecord(address="198.51.100.1:9798", network="testnet", id="p-ok"),
            PeerRecord(address="198.51.100.2:9798", network="main", id="p-main"),
            PeerRecord(address="198.51.100.3:9798", network="testnet", id="p-off", enabled=False),
            PeerRecord(address="198.51.100.4:9798", network="testnet", id="p-ban", is_banned=True),
        )

        args = compile_args(settings, NodeSettings.defaults(), peers)

        assert args == ["--network", "testnet", "--peer", "198.51.100.1:9798"]

    def test_settings_peers_come_before_registry_peers(self):
        settings = NodeSettings()
        settings.network.peers = ["203.0.113.9:9798"]
        peers = peers_for(PeerRecord(address="198.51.100.1:9798", id="p-1"))

        args = compile_args(settings, NodeSettings.defaults(), peers)

        assert args == ["--peer", "203.0.113.9:9798", "--peer", "198.51.100.1:9798"]

    def test_peer_lookup_failure_drops_peer_flags_only(self, caplog):
        def broken(network):
            raise OSError("peers.json unreadable")

        settings = NodeSettings()
        settings.mining.compose = True
        with caplog.at_level(logging.ERROR, logger="nsup.args"):
            args = compile_args(settings, NodeSettings.defaults(), broken)

        assert args == ["--mine"]
        assert "failed to load peers" in caplog.text


class TestValuesEqual:

    @pytest.mark.parametrize(("a", "b", "expected"), [
        (1, 1.0, True),
        (True, 1, False),
        (False, 0, False),
        (["a", "b"], ["a", "b"], True),
        (["a", "b"], ["b", "a"], False),
        ({"x": [1]}, {"x": [1]}, True),
        (None, None, True),
        ("", None, False),
    ])
    def test_values_equal(self, a, b, expected):
        assert values_equal(a, b) is expected


class TestFlagTable:

    def test_consumed_fields_have_no_descriptor(self):
        for key in CONSUMED_FIELDS:
            assert descriptor_for(key) is None

    def test_every_descriptor_names_a_real_field(self):
        settings = NodeSettings()
        for key in FLAG_MAP:
            category, name = key.split(".")
            assert name in settings.category(category), key

    def test_category_descriptors(self):
        network = category_descriptors("network")
        assert list(network)[:3] == ["network", "peer_port", "rpc_port"]
        assert network["peers"].kind == "repeated"
        assert "compose" not in category_descriptors("mining")
        assert category_descriptors("nonexistent") == {}

    def test_category_descriptors_partition_the_table(self):
        total = sum(len(category_descriptors(c)) for c in NodeSettings().to_dict())
        assert total == len(FLAG_MAP)


class TestPreview:

    def test_preview_command_and_explanation(self):
        settings = NodeSettings()
        settings.network.network = "testnet"
        settings.mining.compose = True

        preview = preview_args(settings, NodeSettings.defaults())

        assert preview.args == ["--network", "testnet", "--mine"]
        assert preview.command == "neptune-core --network testnet --mine"
        assert preview.explanation == [
            "Generated 3 CLI arguments:",
            "  Network: --network testnet",
            "  Mining: --mine",
        ]

    def test_preview_quotes_positional(self):
        settings = NodeSettings()
        settings.advanced.block_notify_command = "notify.sh %s"

        preview = preview_args(settings, NodeSettings.defaults(), command="/opt/neptune-core")

        assert preview.command == "/opt/neptune-core 'notify.sh %s'"
        assert "  Positional: notify.sh %s" in preview.explanation

    def test_preview_of_defaults(self):
        preview = preview_args(NodeSettings(), NodeSettings.defaults())
        assert preview.args == []
        assert preview.command == "neptune-core"
        assert preview.explanation == ["Generated 0 CLI arguments:"]

    def test_preview_groups_by_setting_category(self):
        settings = NodeSettings()
        settings.network.rpc_port = 9900
        settings.network.bootstrap = True
        settings.network.reconnect_cooldown = 60
        settings.mining.secret_compositions = True
        settings.security.banned_ips = ["10.0.0.1"]
        peers = peers_for(PeerRecord(address="198.51.100.1:9798", id="p-1"))

        preview = preview_args(settings, NodeSettings.defaults(), peers)

        assert preview.explanation == [
            "Generated 10 CLI arguments:",
            "  Network: --rpc-port 9900, --reconnect-cooldown 60, --bootstrap, --peer 198.51.100.1:9798",
            "  Mining: --secret-compositions",
            "  Security: --ban 10.0.0.1",
        ]

    def test_preview_valued_flag_with_dash_value(self):
        settings = NodeSettings()
        settings.security.scan_blocks = "--"
        preview = preview_args(settings, NodeSettings.defaults())
        assert preview.explanation[-1] == "  Security: --scan-blocks --"
