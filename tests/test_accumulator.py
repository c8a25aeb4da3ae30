import sys, pathlib; sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))

import pytest

from pocket_chat.core.accumulator import ResponseAccumulator


def test_snapshot_is_cumulative():
    acc = ResponseAccumulator()
    assert acc.snapshot() == ""
    assert not acc

    acc.append("Hi")
    assert acc.snapshot() == "Hi"
    acc.append(" there")
    acc.append("!")
    assert acc.snapshot() == "Hi there!"
    assert acc.snapshot() == "Hi there!"
    assert len(acc) == len("Hi there!")
    assert acc


def test_empty_fragments_do_not_count_as_text():
    acc = ResponseAccumulator()
    acc.append("")
    assert not acc
    assert acc.snapshot() == ""


def test_append_after_done_is_rejected():
    acc = ResponseAccumulator()
    acc.append("x")
    acc.mark_done()
    assert acc.done
    with pytest.raises(RuntimeError):
        acc.append("y")
    assert acc.snapshot() == "x"
