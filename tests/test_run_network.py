"""
CLI runner tests - argument handling and result summary
"""

from benor.consensus import EngineState, NodeState, Value
from scripts.run_network import build_launch_lists, main, parse_args, summarize


def state(node_id, decided_value=None, faulty=False):
    return NodeState(
        node_id=node_id,
        estimate=Value.UNKNOWN if faulty else (decided_value or Value.ZERO),
        round=1 if faulty else 2,
        decided=decided_value is not None,
        decided_value=Value.UNKNOWN if faulty else decided_value,
        faulty=faulty,
        alive=True,
        lifecycle=EngineState.INERT if faulty else EngineState.DECIDED,
    )


class TestLaunchLists:

    def test_single_value_fans_out(self):
        args = parse_args(["-n", "4", "-f", "1", "--values", "1"])
        values, faulty = build_launch_lists(args)

        assert faulty == [True, False, False, False]
        assert values == [None, 1, 1, 1]

    def test_explicit_faulty_indices(self):
        args = parse_args(["-n", "5", "-f", "2", "--values", "0", "1", "0", "1", "0", "--faulty", "1", "4"])
        values, faulty = build_launch_lists(args)

        assert faulty == [False, True, False, False, True]
        assert values == [0, None, 0, 1, None]

    def test_random_values_are_seeded(self):
        args = parse_args(["-n", "6", "--seed", "11"])
        assert build_launch_lists(args) == build_launch_lists(args)


class TestSummarize:

    def test_agreement(self, capsys):
        ok = summarize([state(0, faulty=True), state(1, Value.ONE), state(2, Value.ONE)])
        assert ok is True
        assert "All 2 non-faulty nodes decided 1" in capsys.readouterr().out

    def test_undecided(self, capsys):
        ok = summarize([state(0, Value.ONE), state(1)])
        assert ok is False
        assert "1/2 non-faulty nodes undecided" in capsys.readouterr().out

    def test_disagreement(self, capsys):
        ok = summarize([state(0, Value.ONE), state(1, Value.ZERO)])
        assert ok is False
        assert "AGREEMENT VIOLATED" in capsys.readouterr().out


class TestMain:

    def test_local_run_exits_zero(self, monkeypatch):
        monkeypatch.setattr("scripts.run_network.configure_logging", lambda: None)
        code = main(["-n", "3", "-f", "0", "--values", "0", "--poll-interval", "0.01", "--timeout", "5"])
        assert code == 0

    def test_configuration_error_exits_two(self, monkeypatch):
        monkeypatch.setattr("scripts.run_network.configure_logging", lambda: None)
        assert main(["-n", "3", "-f", "1", "--values", "0", "--faulty"]) == 2
