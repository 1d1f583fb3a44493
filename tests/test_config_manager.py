"""Tests for TOML configuration loading."""

from pathlib import Path

from specgraph.config_manager import AskConfig, EdgeWeights, load_ask_config, load_full_config
from specgraph.models import EdgeType


class TestLoadAskConfig:
    """Tests for the [ask] section."""

    def test_missing_file_gives_defaults(self, temp_dir: Path):
        cfg = load_ask_config(temp_dir / "missing.toml")

        assert cfg == AskConfig()
        assert cfg.neighbor_limit == 5
        assert cfg.snippet_count_in_answer == 2

    def test_overrides(self, temp_dir: Path):
        path = temp_dir / "config.toml"
        path.write_text(
            "[ask]\n"
            "neighbor_limit = 3\n"
            "snippet_count_in_answer = 1\n"
            "\n"
            "[ask.edge_weight]\n"
            "depends_on = 2.0\n"
            "impacts = 1\n",
            encoding="utf-8",
        )
        cfg = load_ask_config(path)

        assert cfg.neighbor_limit == 3
        assert cfg.snippet_count_in_answer == 1
        assert cfg.edge_weight.weight(EdgeType.DEPENDS_ON) == 2.0
        assert cfg.edge_weight.weight(EdgeType.IMPACTS) == 1.0
        assert cfg.edge_weight.weight(EdgeType.TESTS) == 0.8

    def test_wrong_types_fall_back(self, temp_dir: Path):
        path = temp_dir / "config.toml"
        path.write_text(
            '[ask]\nneighbor_limit = "many"\nsnippet_count_in_answer = true\n'
            '[ask.edge_weight]\nrefines = "heavy"\n',
            encoding="utf-8",
        )
        cfg = load_ask_config(path)

        assert cfg.neighbor_limit == 5
        assert cfg.snippet_count_in_answer == 2
        assert cfg.edge_weight.refines == 0.7

    def test_malformed_file_gives_defaults(self, temp_dir: Path):
        path = temp_dir / "config.toml"
        path.write_text("[ask\nneighbor_limit = ", encoding="utf-8")

        assert load_full_config(path) == {}
        assert load_ask_config(path) == AskConfig()


class TestEdgeWeights:
    """Tests for default edge weights."""

    def test_defaults(self):
        weights = EdgeWeights()

        assert [weights.weight(t) for t in EdgeType] == [1.0, 0.7, 1.2, 0.8, 0.6]
