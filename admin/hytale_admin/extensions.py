import re
import threading
from collections import deque

# Live console buffer, filled by the console bridge.
# Shared between the bridge thread (writer) and Flask routes (readers).
MAX_CONSOLE_LINES = 500
console_buffer: deque = deque(maxlen=MAX_CONSOLE_LINES)
console_lock = threading.Lock()
# Total lines ever appended to console_buffer. Keeps growing after old lines are
# evicted so a reader cursor (since=N) stays valid.
console_seq: int = 0
ANSI_ESCAPE = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')


def append_console_line(line):
    global console_seq
    with console_lock:
        console_buffer.append(line)
        console_seq += 1
        return console_seq


def console_lines_since(since):
    """Return (lines, total) for every buffered line with sequence number >= since."""
    with console_lock:
        buf = list(console_buffer)
        seq = console_seq
    buf_start = seq - len(buf)
    since = max(buf_start, min(since, seq))
    return buf[since - buf_start:], seq
