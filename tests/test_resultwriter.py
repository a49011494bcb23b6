import json
import threading

import pytest

from netshoot.config import ResultConfig
from netshoot.results import PayloadResult
from netshoot.resultwriter import JsonArrayFile, ResultWriter


def _open(path):
    path.touch()
    return open(path, "r+b")


def test_file_writer_source_case(tmp_path):
    path = tmp_path / "testfile.json"
    writer = JsonArrayFile(_open(path))
    first = b"this is teststtsts  hshgdhsgd"
    nxt = b"<<<<<<<NEXTNEXT>>>>>>>"
    assert writer.write(first) == len(first)
    for _ in range(6):
        writer.write(nxt)
    writer.close()
    assert path.read_bytes() == b"[" + b",".join([first] + [nxt] * 6) + b"]"


def test_reopen_closed_array_appends(tmp_path):
    path = tmp_path / "out.json"
    writer = JsonArrayFile(_open(path))
    writer.write(b'{"a":1}')
    writer.close()
    writer = JsonArrayFile(_open(path))
    writer.initialize()
    writer.write(b'{"b":2}')
    writer.close()
    assert json.loads(path.read_bytes()) == [{"a": 1}, {"b": 2}]


def test_reopen_after_crash_with_trailing_comma(tmp_path):
    path = tmp_path / "out.json"
    path.write_bytes(b'[{"a":1},')
    writer = JsonArrayFile(open(path, "r+b"))
    writer.write(b'{"b":2}')
    writer.close()
    assert json.loads(path.read_bytes()) == [{"a": 1}, {"b": 2}]


def test_reopen_ending_with_object(tmp_path):
    path = tmp_path / "out.json"
    path.write_bytes(b'[{"a":1}')
    writer = JsonArrayFile(open(path, "r+b"))
    writer.write(b'{"b":2}')
    writer.close()
    assert json.loads(path.read_bytes()) == [{"a": 1}, {"b": 2}]


def test_reopen_with_trailing_newline(tmp_path):
    path = tmp_path / "out.json"
    path.write_bytes(b'[{"a":1}]\n')
    writer = JsonArrayFile(open(path, "r+b"))
    writer.write(b'{"b":2}')
    writer.close()
    assert json.loads(path.read_bytes()) == [{"a": 1}, {"b": 2}]


def test_malformed_file_rejected(tmp_path):
    path = tmp_path / "out.json"
    path.write_bytes(b"abc")
    stream = open(path, "r+b")
    writer = JsonArrayFile(stream)
    with pytest.raises(ValueError, match="malformed output file"):
        writer.initialize()
    stream.close()


def _config(tmp_path, threshold=0):
    return ResultConfig(
        output_file=str(tmp_path / "out.json"),
        progress_file=str(tmp_path / "prog.json"),
        tcp_fail_threshold=threshold,
    )


def test_result_writer_writes_results_and_progress(tmp_path):
    stop = threading.Event()
    writer = ResultWriter(_config(tmp_path), stop)
    writer.start()
    writer.write([PayloadResult(host="a.example.com", success=1)], ["a.example.com"])
    writer.write([PayloadResult(host="b.example.com")], ["b.example.com"])
    writer.close()
    data = json.loads((tmp_path / "out.json").read_text())
    assert [item["Host"] for item in data] == ["a.example.com", "b.example.com"]
    progress = json.loads((tmp_path / "prog.json").read_text())
    assert progress == {
        "checked_host": 2,
        "total_tcp_fail": 0,
        "last_host": "b.example.com",
        "total_success": 1,
    }
    assert not stop.is_set()


def test_result_writer_resumes_progress(tmp_path):
    stop = threading.Event()
    writer = ResultWriter(_config(tmp_path), stop)
    writer.start()
    writer.write([PayloadResult(host="a.example.com")], ["a.example.com"])
    writer.close()
    again = ResultWriter(_config(tmp_path), stop)
    again.start()
    assert again.progress().checked_host == 1
    again.write([PayloadResult(host="b.example.com")], ["b.example.com"])
    again.close()
    data = json.loads((tmp_path / "out.json").read_text())
    assert [item["Host"] for item in data] == ["a.example.com", "b.example.com"]


def test_tcp_fail_threshold_sets_stop_signal(tmp_path):
    stop = threading.Event()
    writer = ResultWriter(_config(tmp_path), stop)
    writer.start()
    writer.write([PayloadResult(host="a", total_tcp_fail=25)], ["a"])
    assert not stop.is_set()
    writer.write([PayloadResult(host="b", total_tcp_fail=1)], ["b"])
    assert stop.is_set()
    assert writer.progress().checked_host == 1
    writer.write([PayloadResult(host="c")], ["c"])
    writer.close()
    data = json.loads((tmp_path / "out.json").read_text())
    assert [item["Host"] for item in data] == ["a", "b"]


def test_write_after_close_is_ignored(tmp_path):
    writer = ResultWriter(_config(tmp_path), threading.Event())
    writer.start()
    writer.write([PayloadResult(host="a")], ["a"])
    writer.close()
    writer.write([PayloadResult(host="b")], ["b"])
    assert writer.progress().checked_host == 1


def test_start_fails_on_malformed_output(tmp_path):
    (tmp_path / "out.json").write_bytes(b"abc")
    writer = ResultWriter(_config(tmp_path), threading.Event())
    with pytest.raises(RuntimeError, match="result writer initialize failed"):
        writer.start()