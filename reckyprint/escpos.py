"""ESC/POS byte sequences for post-print signals."""

ESC = 0x1B
GS = 0x1D

CUT_MODES = {"full": 0x00, "partial": 0x01}


def feed(lines: int) -> bytes:
    """ESC d n - feed n lines."""
    return bytes([ESC, 0x64, max(0, min(lines, 255))])


def cut(mode: str = "partial", feed_lines: int = 3) -> bytes:
    """Feed, cut, and feed again so the ticket can be torn off.

    Args:
        mode: 'full' (GS V 0) or 'partial' (GS V 1).
        feed_lines: Lines fed before the cut.

    Returns:
        bytes: Command sequence.

    Raises:
        ValueError: If the mode is unknown.
    """
    if mode not in CUT_MODES:
        raise ValueError(f"Unknown cut mode: {mode}")

    data = feed(feed_lines) + bytes([GS, 0x56, CUT_MODES[mode]])
    if mode == "full":
        # ESC i, for printers that ignore GS V
        data += bytes([ESC, 0x69]) + feed(2)
    else:
        data += feed(5)
    return data


def beep(count: int = 3, duration: int = 5) -> bytes:
    """ESC B n t - sound the buzzer n times, t x 100ms each (1-9)."""
    count = max(1, min(count, 9))
    duration = max(1, min(duration, 9))
    return bytes([ESC, 0x42, count, duration])
