from __future__ import annotations
import random
import time
import uuid
from typing import Dict, List

from PIL import Image

from ..capture.screenshot import encode_jpeg

DEVICE = {"deviceWidth": 390, "deviceHeight": 844}
SCREENS = ["Home", "Product", "Cart", "Checkout"]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _frame(ts: int, shade: int) -> Dict:
    img = Image.new("RGB", (39, 84), (shade, shade, shade))
    return {"timestamp": ts, "image": encode_jpeg(img, 0.3)}


def _session(uid: str, device: str, app_version: str) -> Dict:
    return {
        "sessionId": str(uuid.uuid4()),
        "userId": uid,
        "device": device,
        "appVersion": app_version,
        **DEVICE,
        "frames": [], "taps": [], "scrolls": [], "navigations": [],
    }


def browser(uid="u_browser", seconds=60, step_ms=1000, app_version="1.0.0") -> Dict:
    """Scrolls a lot, taps rarely, stays on the home screen."""
    s = _session(uid, "iPhone 15", app_version)
    t0 = _now_ms(); y = 0
    for i in range(seconds * 1000 // step_ms):
        ts = t0 + i * step_ms
        y += random.randint(40, 120)
        s["scrolls"].append({"offsetY": y, "timestamp": ts})
        s["frames"].append(_frame(ts, 200))
        if i % 15 == 7:
            s["taps"].append({"x": 195 + random.randint(-20, 20), "y": 600, "timestamp": ts + 50,
                              "screen": "Home", "label": "Card", "source": "auto"})
    return s


def buyer(uid="u_buyer", app_version="1.0.0") -> Dict:
    """Walks Home → Product → Cart → Checkout, tapping the main CTA each time."""
    s = _session(uid, "Pixel 8", app_version)
    ts = _now_ms()
    for prev, screen in zip([None] + SCREENS[:-1], SCREENS):
        s["navigations"].append({"timestamp": ts, "from": prev, "to": screen, "trigger": "push"})
        s["frames"].append(_frame(ts + 200, 120))
        for _ in range(random.randint(1, 3)):
            ts += random.randint(400, 1500)
            s["taps"].append({"x": 195 + random.randint(-30, 30), "y": 760 + random.randint(-15, 15),
                              "timestamp": ts, "screen": screen, "label": "Continue",
                              "category": "conversion", "source": "explicit"})
            s["frames"].append(_frame(ts, 90))
        ts += 600
    return s


def rager(uid="u_rager", app_version="1.0.0") -> Dict:
    """Bursts of fast taps on a dead spot of the cart screen, then swipes back."""
    s = _session(uid, "iPhone 13", app_version)
    ts = _now_ms()
    s["navigations"].append({"timestamp": ts, "from": "Home", "to": "Cart", "trigger": "tab"})
    for _ in range(4):
        for j in range(3):
            s["taps"].append({"x": 80, "y": 300, "timestamp": ts + 40 * j, "screen": "Cart", "source": "auto"})
        s["frames"].append(_frame(ts, 40))
        ts += 2000
    s["navigations"].append({"timestamp": ts, "from": "Cart", "to": "Home", "trigger": "swipe-back"})
    return s


PERSONAS = [browser, buyer, rager]


def split(session: Dict, max_frames: int = 10) -> List[Dict]:
    """Chop one session into upload-sized batches the way a flushing client would."""
    frames = session["frames"]
    chunks = [frames[i:i + max_frames] for i in range(0, len(frames), max_frames)] or [[]]
    out = []
    for k, chunk in enumerate(chunks):
        b = dict(session, frames=chunk)
        if k > 0:
            b.update(taps=[], scrolls=[], navigations=[])
        out.append(b)
    return out
