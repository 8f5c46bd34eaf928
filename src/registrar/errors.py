from __future__ import annotations

MESSAGE_LIMIT = 2000
FAILURE_PREFIX = "The command failed to execute with an internal error:\n"

_FENCE = "```"
_ELLIPSIS = "..."


def format_error(exc: BaseException, *, limit: int | None = None) -> str:
    """Render ``exc`` as a fenced one-liner without traceback.

    ``limit`` bounds the whole rendered block, fences included.
    """
    name = exc.__class__.__name__
    text = str(exc).strip()
    body = f"{name}: {text}" if text else name
    body = body.replace(_FENCE, "'''")
    if limit is not None:
        room = limit - len(_FENCE) * 2 - 2
        if room <= len(_ELLIPSIS):
            body = body[: max(room, 0)]
        elif len(body) > room:
            body = body[: room - len(_ELLIPSIS)] + _ELLIPSIS
    return f"{_FENCE}\n{body}\n{_FENCE}"


def failure_message(exc: BaseException) -> str:
    return FAILURE_PREFIX + format_error(
        exc, limit=MESSAGE_LIMIT - len(FAILURE_PREFIX)
    )
