"""
auth/captcha.py -- One-time-use captcha challenges.

CaptchaStore keeps {id -> (normalized answer, expiry)} in process memory.
The composition root owns one instance (app.state.captcha_store); handlers
receive it through app.state, so tests get an isolated store per client.

One-time use: verify() removes the entry before it looks at the answer or the
expiry. Whatever the outcome, the id is gone, so a guessed-wrong challenge
cannot be retried and a correct one cannot be replayed. A single lock covers
issue, verify and purge -- entries are always mutated on read, so a
reader/writer split would buy nothing. Under concurrent verify() calls with
the same id exactly one caller sees the entry.

Answers are compared after strip() + upper(), so "ab12c " satisfies "AB12C".

render_captcha_png() rasterizes the challenge with Pillow. The answer exists
only as pixels in the image; it never appears in the response as text.

Layer rule: no imports from api/, audit/ or profiles/.
"""

from __future__ import annotations

import io
import random
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache

from PIL import Image, ImageDraw, ImageFont

# No 0/O, 1/I -- glyph pairs users routinely confuse.
CAPTCHA_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

CAPTCHA_HEADER = "X-Captcha-ID"


def _normalize(answer: str) -> str:
    return answer.strip().upper()


@dataclass(frozen=True)
class _Challenge:
    answer: str
    expires_at: float


class CaptchaStore:
    """In-memory, lock-guarded registry of pending captcha challenges.

    Usage:
        store = CaptchaStore()
        cid = store.issue("AB12C", ttl=300)
        store.verify(cid, "ab12c")   # True
        store.verify(cid, "AB12C")   # False -- already consumed
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._items: dict[str, _Challenge] = {}

    def issue(self, text: str, ttl: float) -> str:
        """Register a challenge and return its unguessable id (128-bit hex)."""
        challenge_id = secrets.token_hex(16)
        challenge = _Challenge(answer=_normalize(text), expires_at=self._clock() + ttl)
        with self._lock:
            self._items[challenge_id] = challenge
        return challenge_id

    def verify(self, challenge_id: str, answer: str) -> bool:
        """Consume the challenge and report whether the answer satisfied it."""
        with self._lock:
            challenge = self._items.pop(challenge_id, None)
            now = self._clock()
        if challenge is None:
            return False
        if now >= challenge.expires_at:
            return False
        return secrets.compare_digest(_normalize(answer).encode("utf-8"), challenge.answer.encode("utf-8"))

    def purge_expired(self) -> int:
        """Drop expired challenges that nobody tried to verify. Returns count removed."""
        with self._lock:
            now = self._clock()
            expired = [cid for cid, c in self._items.items() if now >= c.expires_at]
            for cid in expired:
                del self._items[cid]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def random_captcha_text(length: int = 5) -> str:
    """Return a random challenge string drawn from CAPTCHA_ALPHABET."""
    return "".join(secrets.choice(CAPTCHA_ALPHABET) for _ in range(length))


_GLYPH_TILE = 56


@lru_cache(maxsize=1)
def _font() -> ImageFont.FreeTypeFont:
    return ImageFont.load_default(size=36)


def render_captcha_png(text: str, width: int = 200, height: int = 80) -> bytes:
    """Rasterize text to a PNG with per-glyph jitter and rotation, noise dots and strike lines."""
    rng = random.Random()
    image = Image.new("RGB", (width, height), "white")
    font = _font()

    step = (width - 40) / max(len(text), 1)
    for i, ch in enumerate(text):
        tile = Image.new("RGBA", (_GLYPH_TILE, _GLYPH_TILE), (0, 0, 0, 0))
        color = (rng.randint(0, 120), rng.randint(0, 120), rng.randint(0, 120), 255)
        ImageDraw.Draw(tile).text((_GLYPH_TILE / 2, _GLYPH_TILE / 2), ch, font=font, fill=color, anchor="mm")
        tile = tile.rotate(rng.randint(-10, 10), resample=Image.Resampling.BICUBIC)
        x = int(30 + i * step) + rng.randint(-5, 5)
        y = height // 2 + rng.randint(-5, 5)
        image.paste(tile, (x - _GLYPH_TILE // 2, y - _GLYPH_TILE // 2), tile)

    draw = ImageDraw.Draw(image, "RGBA")
    for _ in range(100):
        x, y = rng.uniform(0, width), rng.uniform(0, height)
        dot = (rng.randint(0, 220), rng.randint(0, 220), rng.randint(0, 220), 255)
        draw.ellipse((x - 1, y - 1, x + 1, y + 1), fill=dot)

    for _ in range(rng.randint(2, 5)):
        start = (rng.uniform(0, width), rng.uniform(0, height))
        end = (rng.uniform(0, width), rng.uniform(0, height))
        draw.line([start, end], fill=(rng.randint(80, 255), 0, 0, rng.randint(140, 239)), width=rng.randint(1, 3))

    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()
