from photo_library.ingest.compensation import Compensation


def test_unwind_runs_steps_newest_first() -> None:
    calls: list[str] = []
    compensation = Compensation()
    compensation.push("delete original", lambda: calls.append("original"))
    compensation.push("delete records", lambda: calls.append("records"))
    compensation.push("delete thumb", lambda: calls.append("thumb"))

    assert len(compensation) == 3
    assert compensation.unwind() == []
    assert calls == ["thumb", "records", "original"]
    assert len(compensation) == 0


def test_unwind_continues_past_failing_steps() -> None:
    calls: list[str] = []

    def boom() -> None:
        raise OSError("storage down")

    compensation = Compensation()
    compensation.push("delete original", lambda: calls.append("original"))
    compensation.push("delete list", boom)
    compensation.push("delete thumb", lambda: calls.append("thumb"))

    assert compensation.unwind() == ["delete list"]
    assert calls == ["thumb", "original"]


def test_clear_discards_pending_steps() -> None:
    calls: list[str] = []
    compensation = Compensation()
    compensation.push("delete original", lambda: calls.append("original"))
    compensation.clear()
    assert compensation.unwind() == []
    assert calls == []
