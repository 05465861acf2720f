"""Tests for turn grouping."""

from history_lens.turns import bucket_by_day, group_turns


class TestGroupTurns:
    """Tests for group_turns function."""

    def test_role_change_and_gap(self, make_message):
        """Role changes and long silences both start new turns."""
        messages = [
            make_message("a", role="user", createdAt=0),
            make_message("b", role="user", createdAt=60),
            make_message("c", role="assistant", createdAt=65),
            make_message("d", role="user", createdAt=500000),
        ]
        turns = group_turns(messages, gap=420)
        assert [[m.uid for m in t.items] for t in turns] == [["a", "b"], ["c"], ["d"]]
        assert turns[0].ts_start == 0
        assert turns[0].ts_end == 60

    def test_gap_splits_same_role(self, make_message):
        """Same-role messages further apart than the gap are separate turns."""
        messages = [
            make_message("a", role="assistant", createdAt=1706789000),
            make_message("b", role="assistant", createdAt=1706789000 + 421),
        ]
        assert len(group_turns(messages)) == 2

    def test_gap_measured_from_turn_end(self, make_message):
        """A chain of short pauses stays one turn even when its span exceeds the gap."""
        messages = [
            make_message(str(i), role="user", createdAt=1706789000 + i * 300) for i in range(4)
        ]
        turns = group_turns(messages)
        assert len(turns) == 1
        assert len(turns[0].items) == 4

    def test_sorted_by_time(self, make_message):
        """Input order does not matter."""
        messages = [
            make_message("late", role="assistant", createdAt=1706789100),
            make_message("early", role="user", createdAt=1706789000),
        ]
        turns = group_turns(messages)
        assert [t.role for t in turns] == ["user", "assistant"]

    def test_mixed_units(self, make_message):
        """Millisecond and second timestamps are compared in seconds."""
        messages = [
            make_message("a", role="user", createdAt=1706789000),
            make_message("b", role="user", createdAt=1706789010000),
        ]
        turns = group_turns(messages)
        assert len(turns) == 1
        assert turns[0].ts_end == 1706789010.0

    def test_turn_metadata(self, make_message):
        """Turns carry role, vendor and an id from their first message."""
        turn = group_turns([make_message("x", vendor="grok", conversationId="grok:1")])[0]
        assert turn.id == "turn_x"
        assert turn.vendor == "grok"
        assert turn.role == "user"

    def test_empty(self):
        """No messages, no turns."""
        assert group_turns([]) == []


class TestBucketByDay:
    """Tests for bucket_by_day function."""

    def test_days_in_order(self, make_message):
        """Turns are split by the UTC day they start on, oldest day first."""
        turns = group_turns(
            [
                make_message("a", role="user", createdAt=1706831990),
                make_message("b", role="assistant", createdAt=1706832010000),
                make_message("c", role="user", createdAt=1706900000),
            ]
        )
        buckets = bucket_by_day(turns)
        assert [b.day for b in buckets] == ["2024-02-01", "2024-02-02"]
        assert [[t.id for t in b.turns] for b in buckets] == [["turn_a"], ["turn_b", "turn_c"]]

    def test_undated_bucket_first(self, make_message):
        """Undated turns share an 'unknown' bucket ahead of dated days."""
        turns = group_turns(
            [
                make_message("a", role="user", createdAt=1706789000),
                make_message("b", role="assistant", createdAt=0),
            ]
        )
        buckets = bucket_by_day(turns)
        assert [b.day for b in buckets] == ["unknown", "2024-02-01"]

    def test_empty(self):
        assert bucket_by_day([]) == []
