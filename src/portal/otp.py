"""
One-time code entry and the resend countdown.

``OtpInput`` models the six single-digit cells of the verification form,
including where focus goes after each keystroke. ``ResendTimer`` models the
ten-minute window after which a new code may be requested.
"""

import time
from typing import List, Optional

OTP_LENGTH = 6
OTP_TTL_SECONDS = 600

EXPIRED_MESSAGE = "OTP expired. Please request a new one."
INCOMPLETE_MESSAGE = "Please enter the complete 6-digit OTP"


class OtpInput:
    """
    Segmented numeric code input.

    Every mutating method returns the index that should receive focus next,
    or None when focus should not move.
    """

    def __init__(self, length: int = OTP_LENGTH):
        self.length = length
        self.cells: List[str] = [""] * length

    @classmethod
    def from_cells(cls, values: List[Optional[str]], length: int = OTP_LENGTH) -> "OtpInput":
        """Rebuild the input from submitted form cells, applying cell rules."""
        otp = cls(length)
        for index, value in enumerate(values[:length]):
            otp.enter(index, value or "")
        return otp

    def enter(self, index: int, value: str) -> Optional[int]:
        """
        Type into one cell.

        Only the first character is kept, and it must be a digit. Anything
        else leaves the cell unchanged.
        """
        if len(value) > 1:
            value = value[0]
        if value and not value.isdigit():
            return None

        self.cells[index] = value
        if value and index < self.length - 1:
            return index + 1
        return None

    def backspace(self, index: int) -> Optional[int]:
        """
        Press backspace in a cell.

        A filled cell is cleared in place. An empty cell moves focus back.
        """
        if self.cells[index]:
            self.cells[index] = ""
            return None
        if index > 0:
            return index - 1
        return None

    def paste(self, text: str) -> Optional[int]:
        """
        Paste a code.

        The text is cut to the input length and must be all digits, or the
        paste is rejected and nothing changes. Focus lands after the last
        pasted digit, capped at the final cell.
        """
        pasted = (text or "")[:self.length]
        if not pasted.isdigit():
            return None

        self.cells = list(pasted) + [""] * (self.length - len(pasted))
        return min(len(pasted), self.length - 1)

    def clear(self) -> int:
        self.cells = [""] * self.length
        return 0

    @property
    def value(self) -> str:
        return "".join(self.cells)

    @property
    def is_complete(self) -> bool:
        return all(self.cells)


class ResendTimer:
    """
    Countdown that unlocks the resend action when it reaches zero.
    """

    def __init__(self, duration: int = OTP_TTL_SECONDS):
        self.duration = duration
        self.remaining = duration
        self.can_resend = False

    @classmethod
    def resume(cls, started_at: float, now: Optional[float] = None,
               duration: int = OTP_TTL_SECONDS) -> "ResendTimer":
        """Rebuild a timer from the moment the current code was sent."""
        timer = cls(duration)
        elapsed = int((now if now is not None else time.time()) - started_at)
        timer.remaining = max(0, duration - max(0, elapsed))
        timer.can_resend = timer.remaining == 0
        return timer

    def tick(self) -> int:
        """Advance one second."""
        if self.remaining <= 1:
            self.remaining = 0
            self.can_resend = True
        else:
            self.remaining -= 1
        return self.remaining

    def reset(self) -> None:
        self.remaining = self.duration
        self.can_resend = False

    @property
    def expired(self) -> bool:
        return self.remaining == 0

    @property
    def message(self) -> str:
        if self.expired:
            return EXPIRED_MESSAGE
        return f"Code expires in {self.formatted}"

    @property
    def formatted(self) -> str:
        minutes, seconds = divmod(self.remaining, 60)
        return f"{minutes}:{seconds:02d}"
