"""
Tests for NodeSettings loading.
"""

import pytest

from nsup.settings import CATEGORY_ORDER, NodeSettings, init_settings, load_settings, to_snake_case


class TestNodeSettings:

    def test_defaults(self):
        s = NodeSettings.defaults()
        assert s.network.network == "main"
        assert s.network.peers == []
        assert s.mining.compose is False
        assert s.security.fee_notification == "on-chain-symmetric"
        assert s.advanced.block_notify_command is None

    def test_defaults_are_independent(self):
        a, b = NodeSettings.defaults(), NodeSettings.defaults()
        a.network.peers.append("203.0.113.1:9798")
        assert b.network.peers == []

    def test_from_dict_accepts_camel_case(self):
        s = NodeSettings.from_dict({
            "network": {"network": "testnet", "maxNumPeers": 4},
            "mining": {"guesserThreads": 2, "guess": True},
        })
        assert s.network.network == "testnet"
        assert s.network.max_num_peers == 4
        assert s.mining.guesser_threads == 2
        assert s.mining.guess is True

    def test_unknown_keys_kept_in_extra(self):
        s = NodeSettings.from_dict({"performance": {"gpuCount": 2}})
        assert s.extra == {"performance": {"gpu_count": 2}}
        assert list(s.category("performance"))[-1] == "gpu_count"

    def test_empty_string_unsets_optional(self):
        s = NodeSettings.from_dict({"data": {"dataDir": ""}, "performance": {"maxMempoolSize": ""}})
        assert s.data.data_dir is None
        # not optional: "" is a real value
        assert s.performance.max_mempool_size == ""

    def test_non_table_category_ignored(self):
        s = NodeSettings.from_dict({"network": "testnet"})
        assert s.network.network == "main"

    def test_to_dict_covers_all_categories(self):
        d = NodeSettings().to_dict()
        assert list(d) == list(CATEGORY_ORDER)

    @pytest.mark.parametrize(("key", "expected"), [
        ("peerListenAddr", "peer_listen_addr"),
        ("peer_listen_addr", "peer_listen_addr"),
        ("network", "network"),
        ("maxLog2PaddedHeightForProofs", "max_log2_padded_height_for_proofs"),
    ])
    def test_to_snake_case(self, key, expected):
        assert to_snake_case(key) == expected


class TestSettingsFile:

    def test_missing_file_is_defaults(self, tmp_path):
        assert load_settings(tmp_path / "node-settings.toml") == NodeSettings()

    def test_load_toml(self, tmp_path):
        path = tmp_path / "node-settings.toml"
        path.write_text(
            '[network]\nnetwork = "testnet"\npeers = ["203.0.113.7:9798"]\n\n'
            "[mining]\ncompose = true\n"
        )
        s = load_settings(path)
        assert s.network.network == "testnet"
        assert s.network.peers == ["203.0.113.7:9798"]
        assert s.mining.compose is True

    def test_template_loads_as_defaults(self, tmp_path):
        path = init_settings(tmp_path / "node-settings.toml")
        assert load_settings(path) == NodeSettings()
        with pytest.raises(FileExistsError):
            init_settings(path)
