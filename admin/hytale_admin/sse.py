import json

from flask import Response, stream_with_context


def sse_format(event):
    """One event-stream frame. ``None`` becomes a keepalive comment."""
    if event is None:
        return ': keepalive\n\n'
    return f'data: {json.dumps(event, separators=(",", ":"))}\n\n'


def sse_response(events):
    def generate():
        for event in events:
            yield sse_format(event)

    return Response(
        stream_with_context(generate()),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'X-Accel-Buffering': 'no',
        },
    )
