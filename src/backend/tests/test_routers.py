"""
Tests for the HTTP API.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from unittest.mock import patch

from conftest import FakePage, FakePdfEngine, PDF_BYTES
from workorder_engine.main import app as main_app
from workorder_engine.models.work_order import IssuerProfile, TemplateRegion
from workorder_engine.routers import review, templates, upload


@pytest.fixture
def client():
    """App with the routers and a fake engine on app.state."""
    app = FastAPI()
    app.include_router(upload.router)
    app.include_router(review.router)
    app.include_router(templates.router)
    app.state.pdf_engine = FakePdfEngine([
        FakePage(crop=(0, 0, 612, 792)),
        FakePage(crop=(-36, -36, 576, 756)),
    ])
    return TestClient(app)


def _pdf_file(data=PDF_BYTES, content_type="application/pdf"):
    return {'file': ("signed.pdf", data, content_type)}


CAPTURE = {
    'page': 1,
    'rect': {'x': 61.2, 'y': 39.6, 'width': 183.6, 'height': 31.68},
    'displayed_width': 612,
    'displayed_height': 792,
    'rendered_width_px': 1224,
    'rendered_height_px': 1584,
    'bounds_pt': {'x0': 0, 'y0': 0, 'x1': 612, 'y1': 792},
}


class TestHealth:
    """Root and health endpoints."""

    def test_health(self):
        """GET /health reports healthy."""
        response = TestClient(main_app).get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_root(self):
        """GET / reports the app is running."""
        response = TestClient(main_app).get("/")
        assert response.json()['status'] == "running"


class TestTemplateRender:
    """POST /templates/render"""

    def test_render_letter_page(self, client):
        """Returns the image and the geometry it represents."""
        response = client.post("/templates/render", files=_pdf_file(), data={'page': "1"})

        assert response.status_code == 200
        body = response.json()
        assert body['image_data_url'].startswith("data:image/png;base64,")
        assert (body['width_px'], body['height_px']) == (1224, 1584)
        assert body['bounds_pt'] == {'x0': 0, 'y0': 0, 'x1': 612, 'y1': 792}
        assert body['box_source'] == "crop_box"
        assert body['total_pages'] == 2

    def test_render_offset_page(self, client):
        """Offset boxes report their real origin."""
        body = client.post("/templates/render", files=_pdf_file(), data={'page': "2"}).json()
        assert body['bounds_pt']['x0'] == -36
        assert body['width_px'] == 1224

    def test_invalid_pdf(self, client):
        """Engine errors are 422 with the error code."""
        response = client.post("/templates/render", files=_pdf_file(b"not a pdf, just text"), data={'page': "1"})
        assert response.status_code == 422
        assert response.json()['detail']['code'] == "INVALID_DOCUMENT"

    def test_page_out_of_range(self, client):
        """Pages past the end are 422 PAGE_OUT_OF_RANGE."""
        response = client.post("/templates/render", files=_pdf_file(), data={'page': "5"})
        assert response.status_code == 422
        assert response.json()['detail']['code'] == "PAGE_OUT_OF_RANGE"


class TestTemplateRegion:
    """POST /templates/{issuer_key}/region"""

    @patch('workorder_engine.routers.templates.ProfileStore')
    def test_save_region(self, mock_store, client):
        """The drawn rectangle is stored as crop-box percentages."""
        mock_store.return_value.save_region.return_value = True

        response = client.post("/templates/acme/region", json=CAPTURE)

        assert response.status_code == 200
        region = response.json()['region']
        assert region['x_pct'] == pytest.approx(0.1)
        assert region['w_pct'] == pytest.approx(0.3)
        assert region['box_source'] == "crop_box"
        issuer_key, saved = mock_store.return_value.save_region.call_args.args
        assert issuer_key == "acme"
        assert isinstance(saved, TemplateRegion)

    @patch('workorder_engine.routers.templates.ProfileStore')
    def test_unknown_issuer(self, mock_store, client):
        """Saving for a missing profile is 404."""
        mock_store.return_value.save_region.return_value = False
        response = client.post("/templates/nobody/region", json=CAPTURE)
        assert response.status_code == 404

    @patch('workorder_engine.routers.templates.ProfileStore')
    def test_out_of_bounds(self, mock_store, client):
        """Rectangles outside the page are 422 OUT_OF_BOUNDS."""
        capture = dict(CAPTURE, rect={'x': 600, 'y': 0, 'width': 100, 'height': 50})
        response = client.post("/templates/acme/region", json=capture)
        assert response.status_code == 422
        assert response.json()['detail']['code'] == "OUT_OF_BOUNDS"
        mock_store.return_value.save_region.assert_not_called()


class TestPreviewCrop:
    """POST /templates/{issuer_key}/preview-crop"""

    @patch('workorder_engine.routers.templates.ProfileStore')
    def test_preview(self, mock_store, client):
        """Returns the crop image and pixel rectangle at the OCR resolution."""
        region = TemplateRegion(page=1, x_pct=0.1, y_pct=0.05, w_pct=0.3, h_pct=0.04)
        mock_store.return_value.get_profile.return_value = IssuerProfile(issuer_key="acme", template_region=region)

        response = client.post("/templates/acme/preview-crop", files=_pdf_file())

        assert response.status_code == 200
        body = response.json()
        assert body['image_data_url'].startswith("data:image/png;base64,")
        assert body['crop_px']['dpi'] == 200
        assert body['crop_px']['width'] > 0

    @patch('workorder_engine.routers.templates.ProfileStore')
    def test_no_region_configured(self, mock_store, client):
        """Profiles without a region are 400."""
        mock_store.return_value.get_profile.return_value = IssuerProfile(issuer_key="acme")
        response = client.post("/templates/acme/preview-crop", files=_pdf_file())
        assert response.status_code == 400


class TestSignedUpload:
    """POST /signed/upload"""

    @patch('workorder_engine.routers.upload.SignedDocumentProcessor')
    def test_upload(self, mock_processor, client):
        """The PDF is handed to the processor with the form fields."""
        mock_processor.return_value.process_document.return_value = {
            'status': "confirmed", 'reason': "Matched", 'record_key': "acme:1234567"
        }

        response = client.post("/signed/upload", files=_pdf_file(), data={'sender': "dispatch@acme.com"})

        assert response.status_code == 200
        assert response.json()['record_key'] == "acme:1234567"
        args, kwargs = mock_processor.return_value.process_document.call_args
        assert args[0] == PDF_BYTES
        assert kwargs['sender'] == "dispatch@acme.com"
        assert kwargs['issuer_key'] is None

    def test_rejects_non_pdf(self, client):
        """Only PDFs are accepted."""
        response = client.post("/signed/upload", files=_pdf_file(content_type="image/png"))
        assert response.status_code == 400

    def test_rejects_large_file(self, client):
        """Files over 10MB are rejected."""
        big = PDF_BYTES + b"0" * (10 * 1024 * 1024)
        response = client.post("/signed/upload", files=_pdf_file(big))
        assert response.status_code == 400
        assert "too large" in response.json()['detail']


class TestReview:
    """Review queue endpoints."""

    @patch('workorder_engine.routers.review.ReviewQueue')
    def test_pending(self, mock_queue, client):
        """Pending entries are listed with their count."""
        mock_queue.return_value.list_pending.return_value = [
            {'id': "entry-1", 'decision_reason': "OriginalNotFound", 'reason_title': "Original work order not found"}
        ]

        response = client.get("/review/pending?limit=10")

        assert response.status_code == 200
        assert response.json()['total'] == 1
        mock_queue.return_value.list_pending.assert_called_once_with(limit=10)

    @patch('workorder_engine.routers.review.SignedDocumentProcessor')
    def test_resolve(self, mock_processor, client):
        """Resolving re-decides with the manual identifier."""
        mock_processor.return_value.resolve_review.return_value = {
            'status': "confirmed", 'reason': "Matched", 'record_key': "acme:1234567",
            'decision': {'status': "AUTO_CONFIRMED"}, 'resolved': True
        }

        response = client.post("/review/entry-1/resolve", data={'identifier': "1234567"})

        assert response.status_code == 200
        assert response.json()['resolved'] is True
        mock_processor.return_value.resolve_review.assert_called_once_with("entry-1", "1234567", None)

    @patch('workorder_engine.routers.review.SignedDocumentProcessor')
    def test_resolve_missing_entry(self, mock_processor, client):
        """Unknown entries are 404."""
        mock_processor.return_value.resolve_review.return_value = None
        response = client.post("/review/missing/resolve", data={'identifier': "1234567"})
        assert response.status_code == 404
