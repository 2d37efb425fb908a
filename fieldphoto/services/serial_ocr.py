"""Best-effort serial number capture from a photo of a device label.

Order of work: barcode decode, then tesseract at PSM 6 and PSM 7, stopping as
soon as a pass yields label-anchored matches. Results are advisory only; an
empty result means the technician types the value by hand.
"""
from __future__ import annotations

import asyncio
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

import pytesseract
from PIL import Image, ImageOps

from fieldphoto.utils.exceptions import Aborted

logger = logging.getLogger(__name__)

MIN_LENGTH = 6
PSM_PASSES = (6, 7)
CHAR_WHITELIST = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789:-/#"

LABEL_RE = re.compile(r"\b(?:S/?N|Serial(?:\s*No\.?| Number)?)\b", re.IGNORECASE)
VALUE_RE = re.compile(r"[:#\-]?\s*([A-Z0-9\-]{5,})", re.IGNORECASE)
LABELLED_RE = re.compile(LABEL_RE.pattern + VALUE_RE.pattern, re.IGNORECASE)
LOOSE_RE = re.compile(r"[A-Z0-9\-]{6,}", re.IGNORECASE)
LONG_DIGITS_RE = re.compile(r"\b\d{10,}\b")


class AbortSignal(Protocol):
    def is_set(self) -> bool: ...


@dataclass
class OcrInfo:
    status: str  # idle | barcode | ocr | done | error
    progress: int
    error: str | None = None


@dataclass
class RecognitionResult:
    best: str | None = None
    candidates: list[str] = field(default_factory=list)
    label_matches: list[str] = field(default_factory=list)


def normalize_sn(value: str) -> str:
    """Fix digit/letter lookalikes, only where neighbouring digits make the intent clear."""
    out = (value or "").strip().upper()
    out = re.sub(r"Q(?=\d)", "0", out)
    out = re.sub(r"(?<=\d)O(?=\d)", "0", out)
    out = re.sub(r"O(?=\d)", "0", out)
    out = re.sub(r"(?<=\d)[IL](?=\d)", "1", out)
    out = re.sub(r"(?<=\d)B(?=\d)", "8", out)
    out = re.sub(r"(?<=\d)S(?=\d)", "5", out)
    return re.sub(r"[^\w\-]", "", out, flags=re.ASCII)


def _dedup(values: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for v in values:
        if len(v) >= MIN_LENGTH:
            seen.setdefault(v, None)
    return list(seen)


def label_anchored_candidates(
    text: str, words: list[str] | None = None, lines: list[str] | None = None
) -> list[str]:
    found: list[str] = []

    for line in lines or []:
        if LABEL_RE.search(line):
            m = LABELLED_RE.search(line)
            if m:
                found.append(normalize_sn(m.group(1)))

    words = words or []
    for i, word in enumerate(words):
        if LABEL_RE.search(word):
            following = " ".join(w for w in words[i + 1:i + 4] if w)
            m = VALUE_RE.search(following)
            if m:
                found.append(normalize_sn(m.group(1)))

    m = LABELLED_RE.search(text or "")
    if m:
        found.append(normalize_sn(m.group(1)))

    label_line = next((ln for ln in (text or "").splitlines() if LABEL_RE.search(ln)), "")
    loose = LOOSE_RE.search(LABEL_RE.sub("", label_line, count=1))
    if loose:
        found.append(normalize_sn(loose.group(0)))

    return _dedup(found)


def extract_sn_candidates(
    text: str, words: list[str] | None = None, lines: list[str] | None = None
) -> list[str]:
    found = label_anchored_candidates(text, words, lines)
    if not found:
        m = LONG_DIGITS_RE.search(text or "")
        if m:
            found = _dedup([normalize_sn(m.group(0))])
    return found


def _open_image(source: Any) -> Image.Image:
    if isinstance(source, Image.Image):
        image = source
    elif isinstance(source, (bytes, bytearray)):
        image = Image.open(io.BytesIO(source))
    else:
        image = Image.open(source)
    return ImageOps.exif_transpose(image).convert("RGB")


def _decode_barcode(image: Image.Image) -> str | None:
    try:
        from pyzbar.pyzbar import decode as pyzbar_decode
    except ImportError as e:
        logger.warning("Barcode decoding unavailable: %s", e)
        return None

    for symbol in pyzbar_decode(image):
        data = getattr(symbol, "data", b"") or b""
        text = data.decode("utf-8", errors="ignore").strip()
        if text:
            return normalize_sn(text)
    return None


def _run_tesseract(image: Image.Image, psm: int) -> tuple[str, list[str], list[str]]:
    config = f"--psm {psm} --dpi 300 -c tessedit_char_whitelist={CHAR_WHITELIST}"
    data = pytesseract.image_to_data(image, lang="eng", config=config, output_type=pytesseract.Output.DICT)

    words: list[str] = []
    grouped: dict[tuple[int, int, int], list[str]] = {}
    for i, raw in enumerate(data.get("text", [])):
        token = (raw or "").strip()
        if not token:
            continue
        words.append(token)
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        grouped.setdefault(key, []).append(token)

    lines = [" ".join(tokens) for _, tokens in sorted(grouped.items())]
    return "\n".join(lines), words, lines


def _check(abort: AbortSignal | None) -> None:
    if abort is not None and abort.is_set():
        raise Aborted("serial number recognition aborted")


async def recognize_serial_number(
    source: Any,
    *,
    enable_barcode: bool = True,
    abort: AbortSignal | None = None,
    on_progress: Callable[[OcrInfo], None] | None = None,
) -> RecognitionResult:
    """Return the best serial number guess plus every candidate for the technician to pick."""

    def report(status: str, progress: int) -> None:
        if on_progress is not None:
            on_progress(OcrInfo(status=status, progress=progress))

    _check(abort)
    image = await asyncio.to_thread(_open_image, source)
    pool: list[str] = []
    barcode = None

    if enable_barcode:
        report("barcode", 0)
        barcode = await asyncio.to_thread(_decode_barcode, image)
        if barcode:
            pool.append(barcode)

    label_matches: list[str] = []
    for index, psm in enumerate(PSM_PASSES):
        _check(abort)
        report("ocr", max(1, round(index / len(PSM_PASSES) * 100)))
        text, words, lines = await asyncio.to_thread(_run_tesseract, image, psm)
        _check(abort)

        labelled = label_anchored_candidates(text, words, lines)
        pool.extend(extract_sn_candidates(text, words, lines))
        if labelled:
            label_matches = labelled
            break

    candidates = _dedup([normalize_sn(c) for c in pool])
    if barcode:
        best = barcode
    elif label_matches:
        best = label_matches[0]
    else:
        best = candidates[0] if candidates else None

    report("done", 100)
    logger.info("Serial recognition found %d candidates (best=%s)", len(candidates), best)
    return RecognitionResult(best=best, candidates=candidates, label_matches=label_matches)
