"""
Shared fixtures: an in-memory PdfEngine and Supabase table mocks.
"""

import io
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest
from PIL import Image
from unittest.mock import MagicMock

from workorder_engine.models.geometry import CROP_BOX, MEDIA_BOX, BOUNDS

PDF_BYTES = b"%PDF-1.7\n% fake signed work order\n"


class FakePage:
    """Page with raw box values in whatever shape a PDF library might return."""

    def __init__(self, crop=None, media=None, bounds=None, render_size=None, text=""):
        self.boxes = {CROP_BOX: crop, MEDIA_BOX: media, BOUNDS: bounds}
        # Forces the raster size, to simulate a renderer that ignores the box
        self.render_size = render_size
        self.text = text


class FakePixmap:
    def __init__(self, width, height):
        self.width = width
        self.height = height


class FakePdfEngine:
    """PdfEngine over FakePages; renders blank images of the predicted size."""

    def __init__(self, pages, supports_composed_transform=True):
        self.pages = pages
        self.supports_composed_transform = supports_composed_transform
        self.rendered_transforms = []
        self.text_clips = []
        self.closed = 0

    def open_document(self, pdf_data):
        return self.pages

    def page_count(self, document):
        return len(document)

    def load_page(self, document, index):
        return document[index]

    def get_page_box(self, page, kind):
        return page.boxes.get(kind)

    def render(self, page, transform):
        self.rendered_transforms.append(transform)
        if page.render_size:
            return FakePixmap(*page.render_size)
        raw = page.boxes.get(CROP_BOX) or page.boxes.get(MEDIA_BOX) or page.boxes.get(BOUNDS)
        x0, y0, x1, y1 = raw
        return FakePixmap(round((x1 - x0) * transform.scale), round((y1 - y0) * transform.scale))

    def get_pixmap_dims(self, pixmap):
        return pixmap.width, pixmap.height

    def pixmap_to_png(self, pixmap):
        output = io.BytesIO()
        Image.new("RGB", (pixmap.width, pixmap.height), "white").save(output, format="PNG")
        return output.getvalue()

    def extract_text(self, page, clip):
        self.text_clips.append(clip)
        return page.text

    def close_document(self, document):
        self.closed += 1


def table_response(data):
    response = MagicMock()
    response.data = data
    return response


@pytest.fixture
def letter_engine():
    """US Letter page with a crop box at the origin."""
    return FakePdfEngine([FakePage(crop=(0, 0, 612, 792), media=(0, 0, 612, 792), bounds=(0, 0, 612, 792))])


@pytest.fixture
def offset_engine():
    """Page whose crop box origin is (-36, -36)."""
    return FakePdfEngine([FakePage(crop=(-36, -36, 576, 756), media=(-36, -36, 576, 756))])


@pytest.fixture
def mock_supabase():
    """Supabase client whose query chains all resolve to ``execute()``."""
    client = MagicMock()
    return client
