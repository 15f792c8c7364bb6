"""Render an analysis into a downloadable multi-page A4 PDF."""

import io
import logging
import os
import re
from datetime import date

from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError

from gemini_service import DEFAULT_FACE_BOX, display_severity, format_number
from image_preprocessor import split_data_uri
from settings import REPORT_FONT

logger = logging.getLogger(__name__)

# A4 at 150 dpi
PAGE_SIZE = (1240, 1754)
RESOLUTION = 150
MARGIN = 90
PHOTO_SIZE = 620
MAX_VISUAL_TILT = 15

BACKGROUND = "#1e293b"
TEXT_COLOR = "#e2e8f0"
ACCENT = "#60a5fa"
MUTED = "#94a3b8"

REPORT_TITLE = "MirrorAI - Analysis Report"
REPORT_FILENAME = "MirrorAI_Analysis_Report.pdf"


def describe_tilt(angle):
    if angle == 0:
        return "완벽한 좌우 대칭입니다."
    direction = "오른쪽" if angle > 0 else "왼쪽"
    return f"좌우대칭 구조로 봤을 경우 {direction}으로 {format_number(abs(angle))}도 기울어짐"


def visual_tilt(angle):
    return max(-MAX_VISUAL_TILT, min(MAX_VISUAL_TILT, angle))


HANGUL_FONT_PATHS = [
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/noto-cjk/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/google-noto-cjk/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansKR-Regular.ttf",
    "/usr/share/fonts/truetype/nanum/NanumGothic.ttf",
    "/usr/share/fonts/nanum/NanumGothic.ttf",
    "/System/Library/Fonts/AppleSDGothicNeo.ttc",
    "/Library/Fonts/AppleGothic.ttf",
    "C:/Windows/Fonts/malgun.ttf",
]


def find_font(configured=REPORT_FONT):
    """First existing font that can draw Hangul, the configured one first."""
    candidates = ([configured] if configured else []) + HANGUL_FONT_PATHS
    for path in candidates:
        if os.path.exists(path):
            return path
    return None


def load_font(size, path=None):
    path = path or find_font()
    if path:
        try:
            return ImageFont.truetype(path, size)
        except OSError as e:
            logger.warning("Could not load font %s: %s", path, e)
    return ImageFont.load_default(size=size)


def wrap_text(draw, text, font, width):
    lines = []
    for paragraph in str(text).split("\n"):
        line = ""
        for token in re.findall(r"\S+\s*", paragraph):
            if draw.textlength(line + token, font=font) <= width:
                line += token
                continue
            if line:
                lines.append(line.rstrip())
                line = ""
            # a single token wider than the page is broken per character
            for ch in token:
                if line and draw.textlength(line + ch, font=font) > width:
                    lines.append(line.rstrip())
                    line = ""
                line += ch
        lines.append(line.rstrip())
    return lines


class PageWriter:
    def __init__(self):
        self.pages = []
        self._new_page()

    def _new_page(self):
        page = Image.new("RGB", PAGE_SIZE, BACKGROUND)
        self.pages.append(page)
        self.draw = ImageDraw.Draw(page)
        self.y = MARGIN

    @property
    def width(self):
        return PAGE_SIZE[0] - 2 * MARGIN

    def ensure_space(self, height):
        if self.y + height > PAGE_SIZE[1] - MARGIN:
            self._new_page()

    def text(self, text, font, fill=TEXT_COLOR, spacing=10, indent=0):
        line_height = getattr(font, "size", 12) + spacing
        for line in wrap_text(self.draw, text, font, self.width - indent):
            self.ensure_space(line_height)
            self.draw.text((MARGIN + indent, self.y), line, font=font, fill=fill)
            self.y += line_height

    def gap(self, height):
        self.y += height

    def image(self, img):
        self.ensure_space(img.height)
        self.pages[-1].paste(img, (MARGIN, self.y))
        self.y += img.height


def render_photo(image_data, face_box):
    """Square thumbnail with the face-box ellipse drawn on it, or None."""
    try:
        _mime, raw_bytes = split_data_uri(image_data)
        img = Image.open(io.BytesIO(raw_bytes)).convert("RGB")
    except (ValueError, UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        logger.warning("Skipping photo in report: %s", e)
        return None

    img = ImageOps.contain(img, (PHOTO_SIZE, PHOTO_SIZE))
    box = face_box
    if box is None or None in (box.xmin, box.ymin, box.xmax, box.ymax):
        box = DEFAULT_FACE_BOX
    sx, sy = img.width / 1000, img.height / 1000
    draw = ImageDraw.Draw(img)
    draw.ellipse(
        (box.xmin * sx, box.ymin * sy, box.xmax * sx, box.ymax * sy),
        outline=ACCENT,
        width=3,
    )
    cx = (box.xmin + box.xmax) / 2 * sx
    draw.line((cx, box.ymin * sy, cx, box.ymax * sy), fill="red", width=2)
    return img


def build_report_pdf(analysis, image_data, generated_on=None):
    generated_on = generated_on or date.today()
    if find_font() is None:
        logger.warning("No Hangul font found, Korean text will not render; set MIRROR_AI_REPORT_FONT")
    title_font = load_font(44)
    heading_font = load_font(32)
    body_font = load_font(24)

    writer = PageWriter()
    writer.text(REPORT_TITLE, title_font, fill="#ffffff")
    writer.text(f"Date: {generated_on.isoformat()}", body_font, fill=MUTED)
    writer.gap(30)

    photo = render_photo(image_data, analysis.face_box)
    if photo is not None:
        writer.image(photo)
        writer.gap(30)

    writer.text(f"종합 피부 점수: {format_number(analysis.overall_score)} / 100", heading_font, fill=ACCENT)
    writer.text(f"대칭 점수: {format_number(analysis.asymmetry_score)} / 100", heading_font, fill=ACCENT)
    writer.text(describe_tilt(analysis.tilt_angle or 0), body_font)
    if analysis.asymmetry_description:
        writer.text(analysis.asymmetry_description, body_font, fill=MUTED)
    writer.gap(30)

    writer.text("피부 상태 진단", heading_font, fill="#ffffff")
    for condition in analysis.skin_conditions:
        writer.gap(12)
        writer.text(
            f"• {condition.condition} ({display_severity(condition.severity)})",
            body_font,
            fill=ACCENT,
        )
        if condition.description:
            writer.text(condition.description, body_font, indent=30)

    buf = io.BytesIO()
    first, *rest = writer.pages
    first.save(buf, format="PDF", save_all=True, append_images=rest, resolution=RESOLUTION)
    logger.info("Report rendered, %d page(s)", len(writer.pages))
    return buf.getvalue()
