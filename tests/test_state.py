"""
Tests for the cached supervisor state file.
"""

import time

from nsup.state import SupervisorState, read_state, write_state


class TestSupervisorState:

    def test_write_then_read(self, tmp_path):
        path = tmp_path / "data" / ".process-state.json"
        state = SupervisorState(timestamp=1234.5, config={"args": ["--mine"]}, initialized=True)

        assert write_state(path, state) is True
        assert read_state(path) == state

    def test_missing_file(self, tmp_path):
        assert read_state(tmp_path / "nope.json") is None

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        assert read_state(path) is None
        path.write_text('{"config": {}}')
        assert read_state(path) is None

    def test_write_failure_is_not_raised(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        state = SupervisorState(timestamp=time.time(), initialized=True)
        assert write_state(blocker / "state.json", state) is False

    def test_freshness(self):
        state = SupervisorState(timestamp=1000.0)
        assert state.is_fresh(300, now=1000.0)
        assert state.is_fresh(300, now=1299.0)
        assert not state.is_fresh(300, now=1300.0)
        assert not state.is_fresh(300, now=999.0)
