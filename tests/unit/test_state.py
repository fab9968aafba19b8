import json

from app.models.schemas import EngineStatus, LogEntry, ScanProgress, StatusState
from domains.organizing.state import EngineState, dump_watch_state


def test_logs_are_newest_first_and_bounded():
    state = EngineState(log_retention=2)

    for name in ("a", "b", "c"):
        state.add_log(LogEntry(file_name=name, action="moved", success=True))

    assert [entry.file_name for entry in state.logs] == ["c", "b"]


def test_subscribers_receive_snapshots_until_unsubscribed():
    state = EngineState()
    received = []

    unsubscribe = state.subscribe(received.append)
    state.set_status(EngineStatus.processing("a.txt"))
    state.set_scan_progress(ScanProgress(processed=1, total=4, current_file="b.txt"))
    unsubscribe()
    state.set_status(EngineStatus.idle())

    assert len(received) == 2
    assert received[0].status.state == StatusState.PROCESSING
    assert received[0].status.file_name == "a.txt"
    assert received[1].scan_progress.fraction == 0.25


def test_failing_subscriber_does_not_block_others():
    state = EngineState()
    received = []

    def broken(snapshot):
        raise RuntimeError("boom")

    state.subscribe(broken)
    state.subscribe(received.append)
    state.set_status(EngineStatus.watching())

    assert len(received) == 1


def test_watch_state_is_written_to_file(tmp_path):
    output = tmp_path / "state" / "watched.json"
    state = EngineState(watch_state_file=output)

    state.set_watch_state(["/b", "/a"], True)

    data = json.loads(output.read_text())
    assert data["watchedFolderPaths"] == ["/a", "/b"]
    assert data["isRunning"] is True
    assert state.snapshot().watched_folders == ["/b", "/a"]
    assert state.snapshot().is_running is True


def test_dump_watch_state_replaces_previous_file(tmp_path):
    output = tmp_path / "watched.json"

    dump_watch_state(output, ["/x"], True)
    dump_watch_state(output, [], False)

    data = json.loads(output.read_text())
    assert data["watchedFolderPaths"] == []
    assert data["isRunning"] is False
    assert not (tmp_path / "watched.json.tmp").exists()


def test_scan_progress_idle_and_active():
    assert not ScanProgress.idle().is_active
    assert ScanProgress(processed=0, total=3).is_active
    assert not ScanProgress(processed=3, total=3).is_active
