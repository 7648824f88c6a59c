from common.log import format_line
from common.syslog import build_message


def test_console_line_fields_sorted():
    line = format_line("announcer", "ab12", "ANNOUNCE_CONFLICT", "WARN",
                       peer="192.168.1.20", addr=("192.168.1.20", 41234))
    assert " role=announcer id=ab12 lvl=WARN event=ANNOUNCE_CONFLICT " in line
    assert line.endswith("addr=192.168.1.20:41234 peer=192.168.1.20")


def test_syslog_message_header_and_payload():
    msg = build_message(level="WARN", severity=4, message="PEER_FOUND", node_id="ab12",
                        event="PEER_FOUND", peer="192.168.1.10", attempt=2)
    # local0 * 8 + warning
    assert msg.startswith("<132>1 ")
    assert " ab12 numqueue - - - " in msg
    assert msg.endswith(
        'event=PEER_FOUND level=WARN node_id=ab12 msg="PEER_FOUND" peer=192.168.1.10 attempt=2'
    )
