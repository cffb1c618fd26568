import json


def iter_sse_events(lines, keepalives=False):
    """Parse ``text/event-stream`` lines into events.

    ``data:`` payloads are JSON-decoded when possible. Comment lines
    (keepalives) are skipped, or yielded as ``None`` when *keepalives* is set.
    Yields one item per blank-line-terminated frame.
    """
    data = []
    for raw in lines:
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8', errors='replace')
        line = raw.rstrip('\r\n')
        if not line:
            if data:
                payload = '\n'.join(data)
                data = []
                try:
                    yield json.loads(payload)
                except ValueError:
                    yield payload
            continue
        if line.startswith(':'):
            if keepalives:
                yield None
            continue
        field, _, value = line.partition(':')
        if field == 'data':
            data.append(value[1:] if value.startswith(' ') else value)
    if data:
        payload = '\n'.join(data)
        try:
            yield json.loads(payload)
        except ValueError:
            yield payload
