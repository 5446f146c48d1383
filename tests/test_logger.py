from tourguide.logger import Logger


def test_child_lines_are_tagged(tmp_path):
    path = tmp_path / "tour.log"
    root = Logger(str(path), echo=False)
    root.child("tour").log("Tour started", {"total_pois": 3})
    root.log("Plain entry")
    root.close()

    lines = path.read_text().splitlines()
    assert "Tourguide Log" in "\n".join(lines)
    tagged = [line for line in lines if "Tour started" in line]
    assert len(tagged) == 1
    assert "] [tour] Tour started | " in tagged[0]
    assert '"total_pois": 3' in tagged[0]
    plain = [line for line in lines if "Plain entry" in line][0]
    assert "[tour]" not in plain


def test_root_callback_sees_child_messages():
    received = []
    root = Logger(callback=lambda message, data: received.append((message, data)), echo=False)
    root.child("routing").child("cache").log("Route cached", {"size": 1})
    assert received == [("Route cached", {"size": 1})]


def test_child_close_keeps_file_open(tmp_path):
    path = tmp_path / "tour.log"
    root = Logger(str(path), echo=False)
    child = root.child("navigation")
    child.close()
    child.log("Still writing")
    root.close()
    assert root.file is None
    assert "[navigation] Still writing" in path.read_text()


def test_echo_prints_to_stdout(capsys):
    Logger().child("guidance").log("Guidance started")
    assert "[guidance] Guidance started" in capsys.readouterr().out
