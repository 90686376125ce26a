"""Digit recognition for image-rendered keypads.

The keypad solver only depends on the DigitRecognizer protocol:
recognize_digits(png_bytes) -> [RecognizedSymbol]. TesseractRecognizer is the
production implementation; tests and alternative engines plug in their own.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Protocol

import pytesseract
from PIL import Image, ImageOps

from worker.input.coords import BoundingBox

log = logging.getLogger(__name__)

DIGITS = '0123456789'


@dataclass(frozen=True)
class RecognizedSymbol:
    """One recognized character and its box in image pixel space."""

    char: str
    box: BoundingBox


class DigitRecognizer(Protocol):
    def recognize_digits(self, image_png: bytes) -> list[RecognizedSymbol]:
        ...


def parse_tesseract_boxes(raw: str, image_height: int) -> list[RecognizedSymbol]:
    """Parse `image_to_boxes` output into top-left-origin boxes.

    Tesseract box lines are "<char> <left> <bottom> <right> <top> <page>"
    with the origin at the image's bottom-left corner.
    """
    symbols = []
    for line in raw.splitlines():
        parts = line.split()
        if len(parts) < 5:
            continue
        char = parts[0]
        if len(char) != 1 or char not in DIGITS:
            continue
        try:
            left, bottom, right, top = (int(p) for p in parts[1:5])
        except ValueError:
            continue
        symbols.append(RecognizedSymbol(
            char=char,
            box=BoundingBox(
                x=left,
                y=image_height - top,
                width=right - left,
                height=top - bottom,
            ),
        ))
    return symbols


class TesseractRecognizer:
    """pytesseract-backed recognizer restricted to the digit character set."""

    def __init__(self, tesseract_cmd: str = '', page_seg_mode: int = 11) -> None:
        # psm 11: sparse text, keys are scattered rather than in lines
        self._config = f'--psm {page_seg_mode} -c tessedit_char_whitelist={DIGITS}'
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def recognize_digits(self, image_png: bytes) -> list[RecognizedSymbol]:
        """Run OCR on a PNG. Raises pytesseract errors if the engine is missing."""
        image = Image.open(io.BytesIO(image_png))
        gray = ImageOps.grayscale(image)
        raw = pytesseract.image_to_boxes(gray, config=self._config)
        symbols = parse_tesseract_boxes(raw, gray.height)
        log.debug('OCR found %d digit symbols', len(symbols))
        return symbols
