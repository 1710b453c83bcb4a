import pytest

from onedrive_uploader.progress import ConsoleProgress, NullProgress


def test_slots_are_recycled_when_current_reaches_total():
    progress = ConsoleProgress(2, render=False)

    first = progress.start("a.bin", 0, 100)
    second = progress.start("b.bin", 0, 50)
    assert {first, second} == {0, 1}
    assert progress.free_slots() == 0

    progress.update(first, 40)
    assert progress.slots[first].completed is False
    progress.update(first, 100)
    assert progress.slots[first].completed is True

    third = progress.start("c.bin", 10, 20)
    assert third == first
    assert progress.slots[third].name == "c.bin"
    assert progress.slots[third].current == 10


def test_slot_set_never_grows():
    progress = ConsoleProgress(1, render=False)
    progress.start("a.bin", 0, 10)

    with pytest.raises(RuntimeError):
        progress.start("b.bin", 0, 10)
    assert len(progress.slots) == 1


def test_release_frees_a_slot_without_completion():
    progress = ConsoleProgress(1, render=False)
    slot = progress.start("a.bin", 0, 10)

    progress.release(slot)

    assert progress.free_slots() == 1
    assert progress.start("b.bin", 0, 10) == slot


def test_render_lists_every_slot(capsys):
    progress = ConsoleProgress(2, render=False)
    progress.start("photos/img.jpg", 25, 100)

    progress.render()

    out = capsys.readouterr().out.splitlines()
    assert out[0] == "Tasks active (1 / 2)"
    assert "25 %" in out[1] and out[1].endswith("photos/img.jpg")
    assert out[2].endswith("<none>")


def test_renderer_stops_on_complete():
    progress = ConsoleProgress(1, interval=60)
    progress.complete()

    assert progress._timer is not None
    assert progress._timer.finished.is_set()


def test_null_progress_accepts_calls():
    progress = NullProgress()
    slot = progress.start("a", 0, 1)
    progress.update(slot, 1)
    progress.release(slot)
    progress.complete()


def test_slot_started_at_its_total_stays_free():
    progress = ConsoleProgress(1, render=False)

    progress.start("done.bin", 100, 100)

    assert progress.free_slots() == 1
    assert progress.start("next.bin", 0, 10) == 0
